import unittest

from skoolresults.core.entities import Assessment, Student
from skoolresults.core.errors import PreconditionError
from skoolresults.core.grading import GradingLevel, GradingSystem
from skoolresults.state.edit_buffer import (
    BatchUpdate,
    EditBuffer,
    EditBufferState,
    Init,
    Reset,
    SetError,
    Update,
    reduce,
)

STUDENTS = [Student(id="s1", full_name="Ade"), Student(id="s2", full_name="Bola")]
SAVED = [
    Assessment(
        "s1",
        "math",
        "t1",
        ca1=8,
        ca2=7,
        ca3=None,
        exam=50,
        total_score=65,
        grade="B",
        id="a1",
        is_published=False,
    )
]


def loaded_state(grading_system=None):
    return reduce(EditBufferState(), Init(STUDENTS, SAVED, grading_system))


class InitTests(unittest.TestCase):
    def test_one_entry_per_student(self):
        state = loaded_state()
        self.assertTrue(state.initialized)
        self.assertFalse(state.has_changes)
        self.assertEqual(state.error_count, 0)
        self.assertEqual(set(state.scores), {"s1", "s2"})

    def test_missing_numbers_start_at_zero(self):
        state = loaded_state()
        self.assertEqual(state.scores["s1"].ca3, 0)
        self.assertEqual(state.scores["s1"].id, "a1")
        empty = state.scores["s2"]
        self.assertEqual((empty.ca1, empty.ca2, empty.ca3, empty.exam), (0, 0, 0, 0))
        self.assertIsNone(empty.id)
        self.assertIsNone(empty.total_score)


class UpdateTests(unittest.TestCase):
    def test_valid_edit_recomputes_total_and_grade(self):
        state = reduce(loaded_state(), Update("s2", "exam", 65))
        entry = state.scores["s2"]
        self.assertEqual(entry.total_score, 65)
        self.assertEqual(entry.grade, "B")
        self.assertTrue(entry.is_dirty)
        self.assertTrue(state.has_changes)
        self.assertTrue(state.can_save)

    def test_same_update_twice_is_idempotent(self):
        once = reduce(loaded_state(), Update("s1", "ca1", "9"))
        twice = reduce(once, Update("s1", "ca1", "9"))
        self.assertEqual(once, twice)
        self.assertEqual(twice.scores["s1"].total_score, 66)

    def test_invalid_edit_counts_an_error_and_blocks_save(self):
        state = reduce(loaded_state(), Update("s1", "ca1", 11))
        entry = state.scores["s1"]
        self.assertTrue(entry.has_error)
        self.assertEqual(entry.error_message, "Score cannot exceed 10")
        self.assertEqual(entry.total_score, 65)
        self.assertEqual(state.error_count, 1)
        self.assertFalse(state.can_save)

        fixed = reduce(state, Update("s1", "ca1", 10))
        self.assertEqual(fixed.error_count, 0)
        self.assertEqual(fixed.scores["s1"].total_score, 67)

    def test_blank_input_clears_the_field(self):
        state = reduce(loaded_state(), Update("s1", "exam", ""))
        self.assertIsNone(state.scores["s1"].exam)
        self.assertEqual(state.scores["s1"].total_score, 15)

    def test_absent_clears_total_and_grade(self):
        state = reduce(loaded_state(), Update("s1", "is_absent", True))
        entry = state.scores["s1"]
        self.assertTrue(entry.is_absent)
        self.assertIsNone(entry.total_score)
        self.assertIsNone(entry.grade)

    def test_uses_school_grading_system(self):
        system = GradingSystem(levels=(GradingLevel("P", 50, 100, "Pass"), GradingLevel("F", 0, 49, "Fail")))
        state = reduce(loaded_state(system), Update("s2", "exam", 45))
        self.assertEqual(state.scores["s2"].grade, "F")
        self.assertEqual(state.scores["s2"].remark, "Fail")

    def test_unknown_student_or_field_is_ignored(self):
        state = loaded_state()
        self.assertIs(reduce(state, Update("nobody", "ca1", 5)), state)
        self.assertIs(reduce(state, Update("s1", "is_dirty", True)), state)


class FlagTests(unittest.TestCase):
    def test_flag_strings_are_parsed(self):
        state = reduce(loaded_state(), Update("s1", "is_absent", "false"))
        self.assertFalse(state.scores["s1"].is_absent)
        self.assertEqual(state.scores["s1"].total_score, 65)

        state = reduce(state, Update("s1", "is_absent", "True"))
        self.assertTrue(state.scores["s1"].is_absent)
        self.assertIsNone(state.scores["s1"].total_score)

        state = reduce(state, Update("s1", "is_exempt", 0))
        self.assertFalse(state.scores["s1"].is_exempt)

    def test_unrecognised_flag_value_is_ignored(self):
        state = loaded_state()
        self.assertIs(reduce(state, Update("s1", "is_absent", "maybe")), state)
        self.assertIs(reduce(state, Update("s1", "is_exempt", 2)), state)


class ResetTests(unittest.TestCase):
    def test_reset_restores_saved_values(self):
        original = loaded_state()
        state = original
        for field_name, value in (("ca1", 2), ("exam", 99), ("is_exempt", True), ("ca2", 1)):
            state = reduce(state, Update("s1", field_name, value))
        self.assertTrue(state.has_changes)
        self.assertEqual(state.error_count, 1)

        restored = reduce(state, Reset(SAVED))
        self.assertEqual(restored.scores, original.scores)
        self.assertFalse(restored.has_changes)
        self.assertEqual(restored.error_count, 0)


class OtherActionTests(unittest.TestCase):
    def test_batch_update(self):
        state = reduce(loaded_state(), BatchUpdate({"s2": {"remark": "Late entry", "is_dirty": True}, "ghost": {}}))
        self.assertEqual(state.scores["s2"].remark, "Late entry")
        self.assertTrue(state.has_changes)

    def test_set_error(self):
        state = reduce(loaded_state(), SetError("s1", "Save failed"))
        self.assertEqual(state.error_count, 1)
        self.assertEqual(state.scores["s1"].error_message, "Save failed")
        cleared = reduce(state, SetError("s1", None))
        self.assertEqual(cleared.error_count, 0)


class EditBufferTests(unittest.TestCase):
    def test_save_flow(self):
        buffer = EditBuffer()
        buffer.initialize(STUDENTS, SAVED)
        buffer.update("s2", "ca1", 6)
        buffer.update("s2", "exam", 40)

        student_ids, rows = buffer.pending_rows()
        self.assertEqual(student_ids, ["s2"])
        self.assertEqual(rows[0]["ca1"], 6)
        self.assertEqual(rows[0]["exam"], 40)
        self.assertIsNone(rows[0]["id"])

        state = buffer.mark_saved(student_ids, {"s2": "a2"})
        self.assertFalse(state.has_changes)
        self.assertEqual(state.scores["s2"].id, "a2")
        self.assertFalse(state.scores["s2"].is_dirty)

    def test_mark_saved_keeps_rows_changed_since_submission(self):
        buffer = EditBuffer()
        buffer.initialize(STUDENTS, SAVED)
        buffer.update("s1", "ca1", 9)
        buffer.update("s2", "ca1", 4)
        student_ids, rows = buffer.pending_rows()
        submitted = dict(zip(student_ids, rows))
        buffer.update("s2", "exam", 30)

        state = buffer.mark_saved(student_ids, {"s2": "a2"}, submitted)
        self.assertFalse(state.scores["s1"].is_dirty)
        self.assertTrue(state.scores["s2"].is_dirty)
        self.assertEqual(state.scores["s2"].id, "a2")
        self.assertTrue(state.has_changes)

    def test_pending_rows_refuses_invalid_scores(self):
        buffer = EditBuffer()
        buffer.initialize(STUDENTS, SAVED)
        buffer.update("s1", "exam", 80)
        with self.assertRaises(PreconditionError):
            buffer.pending_rows()

    def test_clear(self):
        buffer = EditBuffer()
        buffer.initialize(STUDENTS, SAVED)
        state = buffer.clear()
        self.assertFalse(state.initialized)
        self.assertEqual(state.scores, {})


if __name__ == "__main__":
    unittest.main()
