import unittest

from skoolresults.core.aggregates import build_result_rows
from skoolresults.core.analytics import subject_ids_in, summarize_class, summarize_subject
from skoolresults.core.entities import Assessment
from skoolresults.core.ranking import rank_students


def class_rows():
    assessments = [
        Assessment("s1", "math", "t1", ca1=10, ca2=10, ca3=10, exam=50),
        Assessment("s1", "english", "t1", ca1=10, ca2=10, ca3=10, exam=30),
        Assessment("s2", "math", "t1", ca1=5, ca2=5, ca3=5, exam=15),
        Assessment("s2", "english", "t1", ca1=5, ca2=5, ca3=5, exam=35),
        Assessment("s3", "math", "t1", is_absent=True),
    ]
    students = [("s1", "Ade"), ("s2", "Bola"), ("s3", "Cara")]
    return rank_students(build_result_rows(students, assessments))


class SubjectStatisticsTests(unittest.TestCase):
    def test_math(self):
        stats = summarize_subject("math", class_rows())
        self.assertEqual(stats.total_students, 2)
        self.assertEqual(stats.highest, 80)
        self.assertEqual(stats.lowest, 30)
        self.assertEqual(stats.average, 55)
        self.assertEqual(stats.pass_count, 1)
        self.assertEqual(stats.pass_rate, 50)
        self.assertEqual(stats.grade_distribution, {"A": 1, "F": 1})

    def test_subject_nobody_took(self):
        stats = summarize_subject("physics", class_rows())
        self.assertEqual(stats.total_students, 0)
        self.assertEqual(stats.average, 0)


class ClassSummaryTests(unittest.TestCase):
    def test_summary(self):
        rows = class_rows()
        summary = summarize_class(rows, subject_ids_in(rows))
        self.assertEqual(summary.total_students, 3)
        # s1 averages 70, s2 averages 40, s3 is unranked.
        self.assertEqual(summary.average_score, 55)
        self.assertEqual(summary.highest_score, 70)
        self.assertEqual(summary.lowest_score, 40)
        self.assertAlmostEqual(summary.pass_rate, 200 / 3)
        self.assertEqual(summary.top_student.student_id, "s1")
        self.assertEqual(summary.grade_distribution, {"A": 1, "E": 1, "F": 1})
        self.assertEqual(summary.subject_averages, {"english": 55, "math": 55})

    def test_empty_class(self):
        summary = summarize_class([])
        self.assertEqual(summary.total_students, 0)
        self.assertIsNone(summary.top_student)

    def test_subject_ids_are_sorted(self):
        self.assertEqual(subject_ids_in(class_rows()), ["english", "math"])


if __name__ == "__main__":
    unittest.main()
