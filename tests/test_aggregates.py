import unittest

from skoolresults.core.aggregates import build_result_rows, calculate_student_aggregate
from skoolresults.core.entities import Assessment
from skoolresults.core.scores import SubjectScore


def subject(total, grade=None):
    return SubjectScore(
        ca_total=None,
        total_score=total,
        grade=grade,
        remark=None,
        passed=total is not None and total >= 40,
        is_complete=total is not None,
    )


class StudentAggregateTests(unittest.TestCase):
    def test_average_skips_subjects_without_totals(self):
        row = calculate_student_aggregate(
            "s1",
            {"math": subject(80, "A"), "art": subject(None), "english": subject(60, "B")},
        )
        self.assertEqual(row.total_score, 140)
        self.assertEqual(row.average_score, 70)
        self.assertEqual(row.subjects_counted, 2)
        self.assertEqual(row.grade, "A")
        self.assertIn("art", row.subjects)
        self.assertIsNone(row.subjects["art"].score)

    def test_no_counted_subjects_is_unranked(self):
        row = calculate_student_aggregate("s1", {"art": subject(None)})
        self.assertEqual(row.average_score, 0)
        self.assertEqual(row.subjects_counted, 0)
        self.assertFalse(row.is_ranked)
        self.assertEqual(row.position, 0)


class BuildResultRowsTests(unittest.TestCase):
    def test_rows_for_every_student(self):
        assessments = [
            Assessment("s1", "math", "t1", ca1=10, ca2=10, ca3=10, exam=50),
            Assessment("s1", "english", "t1", ca1=5, ca2=5, ca3=5, exam=45),
            Assessment("s1", "art", "t1", is_exempt=True),
            Assessment("s2", "math", "t1", ca1=2),
        ]
        rows = build_result_rows([("s1", "Ada"), ("s2", "Ben"), ("s3", "Cy")], assessments)
        by_id = {row.student_id: row for row in rows}

        self.assertEqual([row.student_id for row in rows], ["s1", "s2", "s3"])
        self.assertEqual(by_id["s1"].average_score, 70)
        self.assertEqual(by_id["s1"].subjects_counted, 2)
        self.assertIsNone(by_id["s1"].subjects["art"].score)
        self.assertEqual(by_id["s2"].average_score, 2)
        self.assertEqual(by_id["s2"].grade, "F")
        self.assertEqual(by_id["s3"].subjects, {})
        self.assertFalse(by_id["s3"].is_ranked)


if __name__ == "__main__":
    unittest.main()
