import unittest

from chat_sync.models import (
    DIRECTION_TO_INITIATOR,
    DIRECTION_TO_RESPONDER,
    KIND_PLAIN,
    KIND_SCHEDULED_EVENT,
    ROLE_INITIATOR,
    ROLE_RESPONDER,
    ViewModel,
    conversation_key,
    message_to_dict,
    normalize_message,
    normalize_messages,
    parse_timestamp_ms,
    split_conversation_key,
)


class ConversationKeyTests(unittest.TestCase):
    def test_responder_key_is_course_id(self):
        self.assertEqual(conversation_key(ROLE_RESPONDER, "course-1"), "course-1")

    def test_initiator_key_carries_participant(self):
        key = conversation_key(ROLE_INITIATOR, "course-1", "student-9")
        self.assertEqual(key, "course-1:student-9")
        self.assertEqual(split_conversation_key(key), ("course-1", "student-9"))

    def test_initiator_key_without_participant_is_rejected(self):
        with self.assertRaises(ValueError):
            conversation_key(ROLE_INITIATOR, "course-1")


class TimestampTests(unittest.TestCase):
    def test_iso_with_z_suffix(self):
        self.assertEqual(parse_timestamp_ms("2024-01-01T00:00:00Z"), 1_704_067_200_000)

    def test_epoch_millis_pass_through(self):
        self.assertEqual(parse_timestamp_ms(1_704_067_200_000), 1_704_067_200_000)

    def test_missing_or_garbage_sorts_first(self):
        self.assertEqual(parse_timestamp_ms(None), 0)
        self.assertEqual(parse_timestamp_ms("yesterday"), 0)
        self.assertEqual(parse_timestamp_ms(True), 0)


class NormalizeTests(unittest.TestCase):
    def test_backend_record_for_responder(self):
        raw = {
            "_id": "m1",
            "courseId": {"_id": "course-1", "title": "Algebra"},
            "teacherId": {"_id": "t1", "fullName": "Ada Lovelace"},
            "studentId": "s1",
            "message": "Welcome to the course",
            "messageType": "info",
            "direction": "teacher_to_student",
            "read": False,
            "createdAt": "2024-01-01T00:00:00.000Z",
        }
        message = normalize_message(raw, ROLE_RESPONDER)
        self.assertIsNotNone(message)
        self.assertEqual(message.id, "m1")
        self.assertEqual(message.conversation_key, "course-1")
        self.assertEqual(message.direction, DIRECTION_TO_RESPONDER)
        self.assertTrue(message.is_incoming(ROLE_RESPONDER))
        self.assertEqual(message.kind, KIND_PLAIN)
        self.assertEqual(message.sender_display_name, "Ada Lovelace")
        self.assertEqual(message.sent_at_ms, 1_704_067_200_000)

    def test_backend_record_for_initiator(self):
        raw = {
            "_id": "m2",
            "courseId": "course-1",
            "studentId": {"_id": "s1", "name": "Grace"},
            "message": "I have a question",
            "direction": "student_to_teacher",
        }
        message = normalize_message(raw, ROLE_INITIATOR)
        self.assertEqual(message.conversation_key, "course-1:s1")
        self.assertEqual(message.direction, DIRECTION_TO_INITIATOR)
        self.assertTrue(message.is_incoming(ROLE_INITIATOR))
        self.assertEqual(message.sender_display_name, "Grace")

    def test_missing_direction_counts_as_incoming(self):
        message = normalize_message({"_id": "m3", "courseId": "c", "message": "hi"}, ROLE_RESPONDER)
        self.assertEqual(message.direction, DIRECTION_TO_RESPONDER)

    def test_meeting_link_becomes_scheduled_event(self):
        raw = {
            "_id": "m4",
            "courseId": "c",
            "message": "https://zoom.example/j/1",
            "messageType": "zoom_link",
            "meetingDate": "2026-10-20T00:00:00.000Z",
            "meetingTime": "14:30",
        }
        message = normalize_message(raw, ROLE_RESPONDER)
        self.assertEqual(message.kind, KIND_SCHEDULED_EVENT)
        self.assertEqual(message.event_date, "2026-10-20")
        self.assertEqual(message.event_time, "14:30")

    def test_records_that_cannot_be_keyed_are_dropped(self):
        records = [
            {"courseId": "c", "message": "no id"},
            {"_id": "m5", "message": "no course"},
            {"_id": "m6", "courseId": "c", "message": "no student"},
            "not a dict",
            {"_id": "m7", "courseId": "c", "studentId": "s1", "message": "ok"},
        ]
        messages = normalize_messages(records, ROLE_INITIATOR)
        self.assertEqual([message.id for message in messages], ["m7"])

    def test_non_list_payload_yields_nothing(self):
        self.assertEqual(normalize_messages({"messages": []}, ROLE_RESPONDER), [])

    def test_message_to_dict_round_trips_fields(self):
        message = normalize_message({"_id": "m8", "courseId": "c", "message": "hey"}, ROLE_RESPONDER)
        payload = message_to_dict(message)
        self.assertEqual(payload["id"], "m8")
        self.assertEqual(payload["conversation_key"], "c")
        self.assertFalse(payload["read"])


class ViewModelTests(unittest.TestCase):
    def test_first_key_and_copy(self):
        vm = ViewModel(conversations={"a": [], "b": []}, unread_by_conversation={"a": 1, "b": 0}, total_unread=1)
        self.assertEqual(vm.first_key(), "a")
        self.assertFalse(vm.has_conversation(None))
        clone = vm.copy()
        clone.unread_by_conversation["a"] = 0
        self.assertEqual(vm.unread_by_conversation["a"], 1)
        self.assertIsNone(ViewModel().first_key())
