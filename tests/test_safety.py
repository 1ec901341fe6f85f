import unittest

from prose_prime.safety import (
    LEVEL_CONCERN,
    LEVEL_NONE,
    LEVEL_URGENT,
    SafetyClassifier,
    higher_level,
    merge_safety_flags,
    urgent_message,
)


class SafetyClassifierTests(unittest.TestCase):
    def setUp(self) -> None:
        self._classifier = SafetyClassifier()

    def test_weapon_and_presence_is_urgent(self) -> None:
        assessment = self._classifier.assess("I have a gun and he's outside")

        self.assertEqual(LEVEL_URGENT, assessment.level)
        self.assertTrue(assessment.is_urgent)
        self.assertIn("weapon-mention", assessment.flags)
        self.assertIn("immediate-danger", assessment.flags)
        self.assertEqual(urgent_message(), assessment.message)

    def test_curly_apostrophe_matches(self) -> None:
        assessment = self._classifier.assess("she’s outside my door")

        self.assertEqual(LEVEL_URGENT, assessment.level)
        self.assertEqual(("immediate-danger",), assessment.flags)

    def test_self_harm_is_urgent(self) -> None:
        assessment = self._classifier.assess("Sometimes I think about suicide")

        self.assertEqual(LEVEL_URGENT, assessment.level)
        self.assertEqual(("self-harm",), assessment.flags)

    def test_concern_level_has_no_message(self) -> None:
        assessment = self._classifier.assess("He keeps following me and made threats")

        self.assertEqual(LEVEL_CONCERN, assessment.level)
        self.assertEqual(("stalking", "threats"), assessment.flags)
        self.assertIsNone(assessment.message)
        self.assertFalse(assessment.is_urgent)

    def test_urgent_match_hides_concern_flags(self) -> None:
        assessment = self._classifier.assess("He abused me and now he has a gun")

        self.assertEqual(LEVEL_URGENT, assessment.level)
        self.assertEqual(("weapon-mention",), assessment.flags)

    def test_matching_is_case_insensitive_and_word_bounded(self) -> None:
        self.assertEqual(LEVEL_URGENT, self._classifier.assess("HE HAS A GUN").level)
        self.assertEqual(LEVEL_NONE, self._classifier.assess("The knifeless drawer").level)

    def test_plain_text_is_none(self) -> None:
        for text in ("We signed the lease in March.", "", None):
            assessment = self._classifier.assess(text)
            self.assertEqual(LEVEL_NONE, assessment.level)
            self.assertEqual((), assessment.flags)

    def test_urgent_message_points_to_emergency_lines(self) -> None:
        message = urgent_message()
        self.assertIn("911", message)
        self.assertIn("988", message)


class SafetyFlagHelpersTests(unittest.TestCase):
    def test_merge_keeps_first_occurrence_order(self) -> None:
        merged = merge_safety_flags(["stalking", "threats"], ["threats", " weapon-mention "], None, ["", "stalking"])
        self.assertEqual(["stalking", "threats", "weapon-mention"], merged)

    def test_merge_ignores_non_strings(self) -> None:
        self.assertEqual(["threats"], merge_safety_flags(["threats", 3, None]))

    def test_higher_level(self) -> None:
        self.assertEqual(LEVEL_URGENT, higher_level(LEVEL_URGENT, LEVEL_CONCERN))
        self.assertEqual(LEVEL_CONCERN, higher_level(None, LEVEL_CONCERN))
        self.assertEqual(LEVEL_NONE, higher_level("bogus", None))


if __name__ == "__main__":
    unittest.main()
