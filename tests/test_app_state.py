import unittest

from skoolresults.core.entities import Student
from skoolresults.core.errors import PreconditionError
from skoolresults.state.app_state import AppState, Selection


class AppStateTests(unittest.TestCase):
    def setUp(self):
        self.state = AppState()
        self.state.select("t1", "ct1", "math")
        self.state.buffer.initialize([Student(id="s1"), Student(id="s2")], [])

    def test_selection_is_complete(self):
        self.assertTrue(self.state.selection.is_complete)
        self.assertFalse(Selection("t1", "ct1").is_complete)

    def test_same_selection_keeps_buffer(self):
        self.assertFalse(self.state.select("t1", "ct1", "math"))
        self.assertTrue(self.state.buffer.state.initialized)

    def test_new_selection_clears_buffer(self):
        self.state.buffer.update("s1", "ca1", 5)
        self.assertTrue(self.state.select("t1", "ct1", "english"))
        self.assertFalse(self.state.buffer.state.initialized)
        self.assertEqual(self.state.buffer.state.scores, {})

    def test_save_response_marks_rows_saved(self):
        self.state.buffer.update("s1", "ca1", 5)
        ticket = self.state.begin_save()
        self.assertTrue(self.state.apply_save_response(ticket, {"s1": "a1"}))
        self.assertFalse(self.state.buffer.state.has_changes)
        self.assertEqual(self.state.buffer.state.scores["s1"].id, "a1")

    def test_edit_during_save_stays_dirty(self):
        self.state.buffer.update("s1", "ca1", 5)
        ticket = self.state.begin_save()
        self.assertEqual(ticket.rows[0]["exam"], 0)
        self.state.buffer.update("s1", "exam", 60)

        self.assertTrue(self.state.apply_save_response(ticket, {"s1": "a1"}))
        entry = self.state.buffer.state.scores["s1"]
        self.assertEqual(entry.exam, 60)
        self.assertEqual(entry.id, "a1")
        self.assertTrue(entry.is_dirty)
        self.assertTrue(self.state.buffer.state.has_changes)

        student_ids, rows = self.state.buffer.pending_rows()
        self.assertEqual(student_ids, ["s1"])
        self.assertEqual(rows[0]["id"], "a1")
        self.assertEqual(rows[0]["exam"], 60)

    def test_save_needs_a_complete_selection(self):
        state = AppState()
        state.select("t1", "ct1", None)
        with self.assertRaises(PreconditionError):
            state.begin_save()

    def test_superseded_save_response_is_dropped(self):
        self.state.buffer.update("s1", "ca1", 5)
        first = self.state.begin_save()
        self.state.buffer.update("s2", "exam", 50)
        second = self.state.begin_save()

        with self.assertLogs("skoolresults.state.app_state", level="INFO"):
            self.assertFalse(self.state.apply_save_response(first, {"s1": "a1"}))
        self.assertTrue(self.state.buffer.state.has_changes)

        self.assertTrue(self.state.apply_save_response(second, {"s1": "a1", "s2": "a2"}))
        self.assertFalse(self.state.buffer.state.has_changes)

    def test_response_after_selection_change_is_dropped(self):
        self.state.buffer.update("s1", "ca1", 5)
        ticket = self.state.begin_save()
        self.state.select("t1", "ct2", "math")
        self.assertFalse(self.state.apply_save_response(ticket, {"s1": "a1"}))

    def test_clear(self):
        generation = self.state.generation
        self.state.clear()
        self.assertEqual(self.state.selection, Selection())
        self.assertGreater(self.state.generation, generation)


if __name__ == "__main__":
    unittest.main()
