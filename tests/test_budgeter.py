import pytest

from agentdispatch.composition import BudgetDecision, SizeEstimator, SizeUnit, decide, require_mandatory
from agentdispatch.errors import BudgetInfeasibleError


class TestSizeEstimator:
    def test_tokens_round_up(self):
        estimator = SizeEstimator(SizeUnit.TOKENS)
        assert estimator.measure("abcd") == 1
        assert estimator.measure("abcde") == 2

    def test_chars(self):
        assert SizeEstimator(SizeUnit.CHARS).measure("abcde") == 5

    def test_empty_text(self):
        assert SizeEstimator().measure("") == 0
        assert SizeEstimator().measure(None) == 0

    def test_unit_from_string(self):
        assert SizeEstimator("chars").unit is SizeUnit.CHARS


class TestDecide:
    """The budget decision is a pure function of sizes and ceiling."""

    def test_accept(self):
        assert decide(10, 100, 20) is BudgetDecision.ACCEPT

    def test_exact_fit_is_accepted(self):
        assert decide(80, 100, 20) is BudgetDecision.ACCEPT

    def test_reject(self):
        assert decide(90, 100, 20) is BudgetDecision.REJECT

    def test_summary_only_when_detail_would_not_fit(self):
        assert decide(50, 100, 20, detail_size=40) is BudgetDecision.ACCEPT_SUMMARY_ONLY

    def test_summary_with_room_for_detail(self):
        assert decide(50, 100, 20, detail_size=30) is BudgetDecision.ACCEPT

    def test_deterministic(self):
        assert {decide(42, 64, 11, 12) for _ in range(10)} == {BudgetDecision.ACCEPT_SUMMARY_ONLY}


class TestRequireMandatory:
    def test_fits(self):
        require_mandatory(100, 100)

    def test_infeasible(self):
        with pytest.raises(BudgetInfeasibleError) as exc:
            require_mandatory(101, 100, "reviewer")
        assert exc.value.required == 101
        assert exc.value.ceiling == 100
        assert exc.value.exit_code == 3
        assert exc.value.to_dict()["category"] == "composition"
