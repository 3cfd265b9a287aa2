"""Count workflow definition and severity classification."""

import pytest

from count_kernel.domain.validation import Severity, ValidationIssue, ValidationResult, classify_severity
from count_kernel.domain.workflow import (
    COUNT_WORKFLOW,
    CountAction,
    CountStatus,
    Transition,
    Workflow,
)


class TestCountWorkflow:
    """Transitions of the physical count lifecycle."""

    @pytest.mark.parametrize(
        "state, action, allowed",
        [
            (CountStatus.READY, CountAction.START, True),
            (CountStatus.READY, CountAction.ADD_ITEM, False),
            (CountStatus.IN_PROGRESS, CountAction.START, False),
            (CountStatus.IN_PROGRESS, CountAction.ADD_ITEM, True),
            (CountStatus.IN_PROGRESS, CountAction.DELETE_ITEM, True),
            (CountStatus.IN_PROGRESS, CountAction.COMPLETE, True),
            (CountStatus.COMPLETED, CountAction.ADD_ITEM, False),
            (CountStatus.COMPLETED, CountAction.COMPLETE, False),
        ],
    )
    def test_allows(self, state, action, allowed):
        assert COUNT_WORKFLOW.allows(state, action) is allowed

    def test_complete_leads_to_completed(self):
        transition = COUNT_WORKFLOW.transition_for(CountStatus.IN_PROGRESS, CountAction.COMPLETE)
        assert transition.to_state == CountStatus.COMPLETED
        assert COUNT_WORKFLOW.transition_for(CountStatus.COMPLETED, CountAction.START) is None

    def test_unknown_state_rejected(self):
        with pytest.raises(ValueError):
            Workflow(
                name="broken",
                description="",
                initial_state=CountStatus.READY,
                states=(CountStatus.READY,),
                transitions=(
                    Transition(CountStatus.READY, CountStatus.COMPLETED, CountAction.COMPLETE),
                ),
            )


class TestSeverity:
    """Severity grading by error and warning counts."""

    @pytest.mark.parametrize(
        "errors, warnings, expected",
        [
            (1, 0, Severity.CRITICAL),
            (1, 9, Severity.CRITICAL),
            (0, 6, Severity.HIGH),
            (0, 5, Severity.MEDIUM),
            (0, 3, Severity.MEDIUM),
            (0, 2, Severity.LOW),
            (0, 1, Severity.LOW),
            (0, 0, Severity.NONE),
        ],
    )
    def test_classify(self, errors, warnings, expected):
        assert classify_severity(errors, warnings) == expected

    def test_result_to_dict(self):
        result = ValidationResult(warnings=(ValidationIssue("quantity", "high", "HIGH_QUANTITY"),))
        assert result.to_dict() == {
            "valid": True,
            "errors": [],
            "warnings": [{"field": "quantity", "message": "high", "code": "HIGH_QUANTITY"}],
            "timestamp": None,
        }
