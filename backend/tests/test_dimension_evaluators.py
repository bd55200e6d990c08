"""
Tests for the twelve dimension evaluators.

Each test breaks one thing on an otherwise clean item and checks that the
owning evaluator reports the expected diagnostic code.
"""

import pytest

from vaultqa.services.dimension_evaluators import (
    EVALUATORS,
    check_completeness,
    check_data_references,
    check_ehr_sync,
    check_error_detection,
    check_isolation_safety,
    check_option_logic,
    check_pedagogy,
    check_rationale_quality,
    check_sbar_specificity,
    check_scoring_accuracy,
    check_study_companion,
    check_type_structure,
    extract_clinical_values,
)
from vaultqa.services.item_model import Dimension, Severity


def codes(result):
    return [d.code for d in result.diagnostics]


class TestRegistry:

    @pytest.mark.unit
    def test_registry_covers_every_dimension_in_order(self):
        assert list(EVALUATORS) == list(Dimension)

    @pytest.mark.unit
    def test_clean_item_scores_100_everywhere(self, clean_mc_item):
        """Test the reference item has zero diagnostics in every dimension"""
        for dimension, evaluate in EVALUATORS.items():
            result = evaluate(clean_mc_item)
            assert result.diagnostics == [], dimension
            assert result.score == 100.0

    @pytest.mark.unit
    @pytest.mark.parametrize("prefix,dimension", [
        ("COMP", Dimension.COMPLETENESS),
        ("TYPE", Dimension.TYPE_STRUCTURE),
        ("SCORE", Dimension.SCORING_ACCURACY),
        ("PED", Dimension.PEDAGOGY),
        ("RAT", Dimension.RATIONALE_QUALITY),
        ("OPT", Dimension.OPTION_LOGIC),
        ("DATA", Dimension.DATA_REFERENCES),
        ("ERR", Dimension.ERROR_DETECTION),
        ("SAFE", Dimension.ISOLATION_SAFETY),
        ("SBAR", Dimension.SBAR_SPECIFICITY),
        ("EHR", Dimension.EHR_SYNC),
        ("STUDY", Dimension.STUDY_COMPANION),
    ])
    def test_non_object_item_reports_parse_failure(self, prefix, dimension):
        """Test evaluators never raise on a malformed document"""
        result = EVALUATORS[dimension](["not", "an", "item"])

        assert result.score == 0.0
        assert codes(result) == [f"{prefix}-PARSE"]
        assert result.diagnostics[0].severity == Severity.CRITICAL
        assert result.diagnostics[0].dimension == dimension


class TestCompleteness:

    @pytest.mark.unit
    def test_empty_item(self):
        result = check_completeness({})
        assert codes(result) == ["COMP-001", "COMP-002", "COMP-003", "COMP-004", "COMP-005", "COMP-006"]
        assert result.score == 0.0

    @pytest.mark.unit
    def test_short_stem(self, clean_mc_item):
        clean_mc_item["stem"] = "Which?"
        assert codes(check_completeness(clean_mc_item)) == ["COMP-003"]

    @pytest.mark.unit
    def test_empty_correct_rationale(self, clean_mc_item):
        clean_mc_item["rationale"]["correct"] = "  "
        result = check_completeness(clean_mc_item)
        assert codes(result) == ["COMP-007"]
        assert result.score == 60.0


class TestTypeStructure:

    @pytest.mark.unit
    def test_unknown_type(self, clean_mc_item):
        clean_mc_item["type"] = "essay"
        assert codes(check_type_structure(clean_mc_item)) == ["TYPE-001"]

    @pytest.mark.unit
    def test_single_answer_needs_two_options(self, clean_mc_item):
        clean_mc_item["options"] = clean_mc_item["options"][:1]
        assert codes(check_type_structure(clean_mc_item)) == ["TYPE-010"]

    @pytest.mark.unit
    def test_select_n_count_mismatch_is_warning(self, select_n_item):
        select_n_item["n"] = 2
        result = check_type_structure(select_n_item)
        assert codes(result) == ["TYPE-023"]
        assert result.diagnostics[0].severity == Severity.WARNING

    @pytest.mark.unit
    def test_select_n_requires_n(self, select_n_item):
        select_n_item.pop("n")
        assert codes(check_type_structure(select_n_item)) == ["TYPE-022"]

    @pytest.mark.unit
    def test_ordered_response_must_list_every_option(self):
        item = {
            "type": "orderedResponse",
            "options": [{"id": "a"}, {"id": "b"}, {"id": "c"}],
            "correctOrder": ["a", "b"],
        }
        assert codes(check_type_structure(item)) == ["TYPE-042"]

    @pytest.mark.unit
    def test_highlight_requires_passage_and_indices(self):
        item = {"type": "highlight", "passage": "short", "correctSpanIndices": [1, -2]}
        assert codes(check_type_structure(item)) == ["TYPE-030", "TYPE-031"]

    @pytest.mark.unit
    def test_matrix_row_without_match_and_unknown_column(self):
        item = {
            "type": "matrixMatch",
            "rows": [{"id": "r1"}, {"id": "r2"}],
            "columns": [{"id": "c1"}, {"id": "c2"}],
            "correctMatches": {"r1": "c9"},
        }
        assert codes(check_type_structure(item)) == ["TYPE-053", "TYPE-054"]

    @pytest.mark.unit
    def test_cloze_requires_template_and_blanks(self):
        item = {"type": "clozeDropdown", "blanks": [{"id": "blank1", "options": ["x"]}]}
        assert codes(check_type_structure(item)) == ["TYPE-060", "TYPE-062"]

    @pytest.mark.unit
    def test_cloze_with_non_object_blank_is_parse_failure(self):
        item = {"type": "clozeDropdown", "template": "Give {{blank1}}", "blanks": ["oops"]}
        result = check_type_structure(item)
        assert codes(result) == ["TYPE-PARSE"]
        assert result.score == 0.0

    @pytest.mark.unit
    def test_bowtie_condition_and_references(self):
        item = {
            "type": "bowtie",
            "actions": [{"id": "a1"}, {"id": "a2"}],
            "parameters": [{"id": "p1"}, {"id": "p2"}],
            "condition": "Sepsis",
            "potentialConditions": ["Dehydration", "Heart failure"],
            "correctActionIds": ["a1", "a9"],
            "correctParameterIds": ["p1"],
        }
        assert codes(check_type_structure(item)) == ["TYPE-071", "TYPE-072"]

    @pytest.mark.unit
    def test_hotspot_unknown_reference(self):
        item = {"type": "hotspot", "hotspots": [{"id": "h1"}], "correctHotspotIds": ["h2"]}
        assert codes(check_type_structure(item)) == ["TYPE-082"]


class TestScoringAccuracy:

    @pytest.mark.unit
    def test_missing_scoring_is_warning(self, clean_mc_item):
        clean_mc_item.pop("scoring")
        result = check_scoring_accuracy(clean_mc_item)
        assert codes(result) == ["SCORE-001"]
        assert result.score == 85.0

    @pytest.mark.unit
    def test_invalid_method(self, clean_mc_item):
        clean_mc_item["scoring"]["method"] = "weighted"
        assert codes(check_scoring_accuracy(clean_mc_item)) == ["SCORE-002"]

    @pytest.mark.unit
    def test_method_not_used_for_type(self, clean_mc_item):
        clean_mc_item["scoring"]["method"] = "polytomous"
        assert codes(check_scoring_accuracy(clean_mc_item)) == ["SCORE-005"]

    @pytest.mark.unit
    def test_non_integer_max_points(self, clean_mc_item):
        clean_mc_item["scoring"]["maxPoints"] = "one"
        assert codes(check_scoring_accuracy(clean_mc_item)) == ["SCORE-004"]

    @pytest.mark.unit
    def test_dichotomous_must_be_one_point(self, clean_mc_item):
        clean_mc_item["scoring"]["maxPoints"] = 2
        assert codes(check_scoring_accuracy(clean_mc_item)) == ["SCORE-010"]

    @pytest.mark.unit
    def test_max_points_must_match_correctness_map(self, select_n_item):
        """Test 3 keyed answers scored for 1 point is a single critical"""
        result = check_scoring_accuracy(select_n_item)
        assert codes(result) == ["SCORE-020"]
        assert result.score == 60.0

    @pytest.mark.unit
    def test_correct_option_must_exist(self, clean_mc_item):
        clean_mc_item["correctOptionId"] = "z"
        assert codes(check_scoring_accuracy(clean_mc_item)) == ["SCORE-030"]

    @pytest.mark.unit
    def test_cloze_correct_option_must_be_offered(self):
        item = {
            "type": "clozeDropdown",
            "template": "Give {{blank1}}",
            "blanks": [{"id": "blank1", "options": ["furosemide", "digoxin"], "correctOption": "metoprolol"}],
            "scoring": {"method": "polytomous", "maxPoints": 1},
        }
        assert codes(check_scoring_accuracy(item)) == ["SCORE-032"]

    @pytest.mark.unit
    def test_scoring_string_is_parse_failure(self, clean_mc_item):
        clean_mc_item["scoring"] = "dichotomous"
        assert codes(check_scoring_accuracy(clean_mc_item)) == ["SCORE-PARSE"]


class TestPedagogy:

    @pytest.mark.unit
    def test_alias_is_info(self, clean_mc_item):
        clean_mc_item["pedagogy"]["bloomLevel"] = "Applying"
        result = check_pedagogy(clean_mc_item)
        assert codes(result) == ["PED-006"]
        assert result.score == 95.0

    @pytest.mark.unit
    def test_invalid_values_are_warnings(self, clean_mc_item):
        clean_mc_item["pedagogy"].update({"bloomLevel": "memorize", "cjmmStep": "guess", "nclexCategory": "Cardiology"})
        assert codes(check_pedagogy(clean_mc_item)) == ["PED-001", "PED-002", "PED-003"]

    @pytest.mark.unit
    def test_word_difficulty_is_info(self, clean_mc_item):
        clean_mc_item["pedagogy"]["difficulty"] = "moderate"
        result = check_pedagogy(clean_mc_item)
        assert codes(result) == ["PED-004"]
        assert result.diagnostics[0].severity == Severity.INFO

    @pytest.mark.unit
    def test_empty_topic_tags(self, clean_mc_item):
        clean_mc_item["pedagogy"]["topicTags"] = []
        assert codes(check_pedagogy(clean_mc_item)) == ["PED-005"]


class TestRationaleQuality:

    @pytest.mark.unit
    def test_short_explanation(self, clean_mc_item):
        clean_mc_item["rationale"]["incorrect"] = "Other options are wrong."
        assert codes(check_rationale_quality(clean_mc_item)) == ["RAT-004"]

    @pytest.mark.unit
    def test_missing_incorrect_explanation(self, clean_mc_item):
        clean_mc_item["rationale"].pop("incorrect")
        assert codes(check_rationale_quality(clean_mc_item)) == ["RAT-002"]

    @pytest.mark.unit
    def test_generic_template_text(self, clean_mc_item):
        clean_mc_item["rationale"]["correct"] += " Focus on the pathophysiology, assessment cues, and priority interventions."
        assert codes(check_rationale_quality(clean_mc_item)) == ["RAT-010"]

    @pytest.mark.unit
    def test_identical_explanations(self, clean_mc_item):
        clean_mc_item["rationale"]["incorrect"] = clean_mc_item["rationale"]["correct"]
        result = check_rationale_quality(clean_mc_item)
        # the copied sentence also reads as a repeated sentence
        assert codes(result) == ["RAT-010", "RAT-011"]
        assert result.diagnostics[1].severity == Severity.CRITICAL

    @pytest.mark.unit
    def test_missing_review_units_is_info(self, clean_mc_item):
        clean_mc_item["rationale"].pop("reviewUnits")
        assert codes(check_rationale_quality(clean_mc_item)) == ["RAT-003"]

    @pytest.mark.unit
    def test_rationale_list_is_parse_failure(self, clean_mc_item):
        clean_mc_item["rationale"] = ["Because."]
        assert codes(check_rationale_quality(clean_mc_item)) == ["RAT-PARSE"]


class TestOptionLogic:

    @pytest.mark.unit
    def test_duplicate_ids_and_text(self, clean_mc_item):
        clean_mc_item["options"][3] = {"id": "c", "text": "Weigh the client on the bedside scale"}
        assert codes(check_option_logic(clean_mc_item)) == ["OPT-001", "OPT-003"]

    @pytest.mark.unit
    def test_empty_option_text(self, clean_mc_item):
        clean_mc_item["options"][2]["text"] = ""
        assert codes(check_option_logic(clean_mc_item)) == ["OPT-002"]

    @pytest.mark.unit
    def test_repeated_correct_id(self, select_n_item):
        select_n_item["correctOptionIds"] = ["a", "b", "a"]
        assert codes(check_option_logic(select_n_item)) == ["OPT-004"]

    @pytest.mark.unit
    def test_near_duplicate_distractor(self, clean_mc_item):
        clean_mc_item["options"][1]["text"] = "Raise the head of the bed to high Fowlers position"
        assert codes(check_option_logic(clean_mc_item)) == ["OPT-005"]

    @pytest.mark.unit
    def test_cloze_placeholder_mismatch(self):
        item = {
            "type": "clozeDropdown",
            "template": "Give {{blank1}} then {{blank3}}",
            "blanks": [{"id": "blank1"}, {"id": "blank2"}],
        }
        assert codes(check_option_logic(item)) == ["OPT-020", "OPT-021"]


class TestDataReferences:

    @pytest.mark.unit
    def test_reference_to_missing_tab(self, clean_mc_item):
        clean_mc_item["stem"] = "Review the vital signs. " + clean_mc_item["stem"]
        result = check_data_references(clean_mc_item)
        assert codes(result) == ["DATA-002"]
        assert result.diagnostics[0].field == "itemContext.vitals"

    @pytest.mark.unit
    def test_lazy_tab(self, clean_mc_item):
        clean_mc_item["itemContext"] = {"labs": "Potassium 3.1"}
        assert codes(check_data_references(clean_mc_item)) == ["DATA-003"]

    @pytest.mark.unit
    def test_breakdown_label_must_match_option(self, clean_mc_item):
        clean_mc_item["rationale"]["answerBreakdown"] = [
            {"label": "a", "content": "Correct."},
            {"label": "Option Z", "content": "Wrong."},
        ]
        assert codes(check_data_references(clean_mc_item)) == ["DATA-010"]


class TestErrorDetection:

    @pytest.mark.unit
    def test_placeholder_in_option(self, clean_mc_item):
        clean_mc_item["options"][2]["text"] = "[object Object]"
        result = check_error_detection(clean_mc_item)
        assert codes(result) == ["ERR-001"]
        assert result.diagnostics[0].field == "options[2].text"

    @pytest.mark.unit
    def test_one_diagnostic_per_rule(self, clean_mc_item):
        clean_mc_item["options"][2]["text"] = "undefined"
        clean_mc_item["options"][3]["text"] = "undefined"
        assert codes(check_error_detection(clean_mc_item)) == ["ERR-001"]

    @pytest.mark.unit
    def test_control_characters(self, clean_mc_item):
        clean_mc_item["rationale"]["incorrect"] += "\x07"
        assert codes(check_error_detection(clean_mc_item)) == ["ERR-004"]

    @pytest.mark.unit
    def test_short_stem_is_warning(self, clean_mc_item):
        clean_mc_item["stem"] = "Which action first?"
        assert codes(check_error_detection(clean_mc_item)) == ["ERR-010"]

    @pytest.mark.unit
    def test_cloze_template_tokens_are_not_defects(self):
        item = {"type": "clozeDropdown", "stem": "Complete the nurse's note below.", "template": "Give {{blank1}} now"}
        assert codes(check_error_detection(item)) == []

    @pytest.mark.unit
    def test_ids_are_not_scanned(self, clean_mc_item):
        clean_mc_item["id"] = "undefined"
        assert codes(check_error_detection(clean_mc_item)) == []


class TestIsolationSafety:

    @pytest.mark.unit
    def test_allergy_contradiction(self, clean_mc_item):
        clean_mc_item["itemContext"] = {"patient": {"allergies": ["Penicillin (hives)"]}}
        clean_mc_item["options"][0]["text"] = "Administer amoxicillin 500 mg orally"
        assert codes(check_isolation_safety(clean_mc_item)) == ["SAFE-001"]

    @pytest.mark.unit
    def test_withholding_the_drug_is_safe(self, clean_mc_item):
        clean_mc_item["itemContext"] = {"patient": {"allergies": "penicillin"}}
        clean_mc_item["options"][0]["text"] = "Hold the amoxicillin and notify the provider"
        assert codes(check_isolation_safety(clean_mc_item)) == []

    @pytest.mark.unit
    def test_airborne_precaution_conflict(self, clean_mc_item):
        clean_mc_item["itemContext"] = {"patient": {"iso": "Airborne"}}
        clean_mc_item["options"][0]["text"] = "Wear a surgical mask when entering the room"
        assert codes(check_isolation_safety(clean_mc_item)) == ["SAFE-002"]

    @pytest.mark.unit
    def test_alcohol_rub_for_c_diff(self, clean_mc_item):
        clean_mc_item["itemContext"] = {"patient": {"iso": "Contact", "diagnosis": "C. diff colitis"}}
        clean_mc_item["options"][0]["text"] = "Clean hands with alcohol-based hand rub after care"
        assert codes(check_isolation_safety(clean_mc_item)) == ["SAFE-002"]

    @pytest.mark.unit
    def test_scenario_requires_isolation_level(self, clean_mc_item):
        clean_mc_item["itemContext"] = {"patient": {"iso": "Standard", "diagnosis": "Active tuberculosis"}}
        result = check_isolation_safety(clean_mc_item)
        assert codes(result) == ["SAFE-010"]
        assert "airborne" in result.diagnostics[0].message

    @pytest.mark.unit
    def test_no_patient_context_is_inapplicable(self, clean_mc_item):
        assert check_isolation_safety(clean_mc_item).score == 100.0


class TestSbarSpecificity:

    @pytest.mark.unit
    def test_short_note_with_civilian_time(self, clean_mc_item):
        clean_mc_item["itemContext"] = {"sbar": "Client stable at 8:30 pm."}
        assert codes(check_sbar_specificity(clean_mc_item)) == ["SBAR-001", "SBAR-002", "SBAR-004"]

    @pytest.mark.unit
    def test_well_formed_note(self, clean_mc_item):
        clean_mc_item["itemContext"] = {"sbar": "At 14:30 " + "assessment " * 128}
        assert codes(check_sbar_specificity(clean_mc_item)) == []

    @pytest.mark.unit
    def test_missing_timestamps_is_info(self, clean_mc_item):
        clean_mc_item["itemContext"] = {"sbar": "assessment " * 130}
        assert codes(check_sbar_specificity(clean_mc_item)) == ["SBAR-003"]


class TestEhrSync:

    @pytest.mark.unit
    def test_extract_clinical_values(self):
        assert extract_clinical_values("BP 90/60 and potassium 3.1") == [("BP", "90/60"), ("potassium", "3.1")]

    @pytest.mark.unit
    def test_value_missing_from_chart(self, clean_mc_item):
        clean_mc_item["itemContext"] = {
            "vitals": "08:00 heart rate 88 beats/min, blood pressure 124/78 mm Hg, respiratory rate 20 breaths/min, "
                      "oxygen saturation 95% on room air.",
        }
        clean_mc_item["stem"] = "The client's heart rate is now 132 beats/min. Which action should the nurse take first?"
        result = check_ehr_sync(clean_mc_item)
        assert codes(result) == ["EHR-001"]
        assert "132" in result.diagnostics[0].message

    @pytest.mark.unit
    def test_value_present_in_chart(self, clean_mc_item):
        clean_mc_item["itemContext"] = {"vitals": "08:00 heart rate 132 beats/min"}
        clean_mc_item["stem"] = "The client's heart rate is 132 beats/min. Which action should the nurse take first?"
        assert codes(check_ehr_sync(clean_mc_item)) == []


class TestStudyCompanion:

    @pytest.mark.unit
    def test_missing_parts_are_info(self, clean_mc_item):
        clean_mc_item["rationale"]["clinicalPearls"] = [""]
        clean_mc_item["rationale"].pop("mnemonic")
        result = check_study_companion(clean_mc_item)
        assert codes(result) == ["STUDY-001", "STUDY-003"]
        assert result.score == 90.0

    @pytest.mark.unit
    def test_incomplete_trap(self, clean_mc_item):
        clean_mc_item["rationale"]["questionTrap"] = {"trap": "Choosing a test first."}
        assert codes(check_study_companion(clean_mc_item)) == ["STUDY-002"]
