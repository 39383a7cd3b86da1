"""Tests for engine/plan_builder.py.

Tests for plan construction, step numbering and dependency validation.
"""

import pytest

from conftest import sample_phases
from forkdeploy.core.errors import ExitCode, PlanValidationError
from forkdeploy.engine import (
    CapabilityGrant,
    PlanBuilder,
    StepKind,
    configure,
    grant,
    phase,
    provision,
    ref,
)


def build(*phases):
    return PlanBuilder().build(list(phases))


class TestPlanStructure:
    """Tests for the shape of a built plan."""

    def test_sample_plan_has_twenty_steps(self, sample_plan):
        """Test steps are flattened in phase order."""
        assert len(sample_plan.steps) == 20
        assert [p.name for p in sample_plan.phases] == ["tokens", "core", "staking", "governance"]

    def test_step_ids_encode_position_kind_and_label(self, sample_plan):
        """Test step ids are derived from phase, step number, kind and label."""
        step = sample_plan.steps[11]

        assert step.step_id == "p03.s03.configure.stakedTracker.initialize"
        assert step.kind is StepKind.CONFIGURE
        assert step.method == "initialize"

    def test_step_ids_stable_across_builds(self):
        """Test building the same description twice yields identical ids."""
        first = [s.step_id for s in PlanBuilder().build(sample_phases()).steps]
        second = [s.step_id for s in PlanBuilder().build(sample_phases()).steps]

        assert first == second

    def test_resources_collected(self, sample_plan):
        """Test every provision step declares a resource."""
        assert len(sample_plan.resources) == 11
        assert sample_plan.resources["bonusTracker"].role == "bonus-tracker"
        assert sample_plan.resources["usdg"].references() == ["vault"]

    def test_grant_labels_include_grantee(self, sample_plan):
        """Test grant steps are labelled with their grantee."""
        labels = [s.label for s in sample_plan.steps if s.grant is not None]

        assert "escrowedToken.setHandler(stakedDistributor)" in labels
        assert "vault.setGov(timelock)" in labels

    def test_declared_grants(self, sample_plan):
        """Test the plan exposes every capability grant."""
        assert CapabilityGrant("vault", "router", "router") in sample_plan.declared_grants
        assert len(sample_plan.declared_grants) == 5

    def test_default_grant_args(self):
        """Test grants default to (grantee reference, True)."""
        plan = build(
            phase(
                "only",
                provision("token", "Token"),
                provision("minter", "Minter"),
                grant("token", "setMinter", "minter", "minter"),
            )
        )

        assert plan.steps[2].args == (ref("minter"), True)

    def test_to_dict_describes_references(self, sample_plan):
        """Test plan serialization marks references with @."""
        data = sample_plan.to_dict()

        assert data["total_steps"] == 20
        usdg = data["phases"][1]["steps"][1]
        assert usdg["args"] == ["@vault"]


class TestDerivedDependencies:
    """Tests for dependencies derived from references and grants."""

    def test_configure_depends_on_target_provision(self, sample_plan):
        step = sample_plan.step("p01.s05.configure.governanceToken.setInPrivateTransferMode")

        assert step.depends_on == {"p01.s01.provision.governanceToken"}

    def test_nested_references_become_dependencies(self, sample_plan):
        """Test references inside nested lists are found."""
        step = sample_plan.steps[11]

        assert sample_plan.provision_step("governanceToken").step_id in step.depends_on
        assert sample_plan.provision_step("escrowedToken").step_id in step.depends_on
        assert sample_plan.provision_step("stakedDistributor").step_id in step.depends_on

    def test_grant_depends_on_grantee(self, sample_plan):
        step = sample_plan.step("p04.s02.configure.vault.setGov(timelock)")

        assert "p04.s01.provision.timelock" in step.depends_on

    def test_grant_chain_ordering(self):
        """Test a grant by X depends on earlier grants made to X."""
        plan = build(
            phase(
                "wiring",
                provision("staked", "RewardTracker"),
                provision("bonus", "RewardTracker"),
                provision("fee", "RewardTracker"),
                grant("staked", "setHandler", "bonus", "handler"),
                grant("bonus", "setHandler", "fee", "handler"),
            )
        )

        chained = plan.steps[4]
        assert plan.steps[3].step_id in chained.depends_on

    def test_grant_chain_out_of_order_rejected(self):
        """Test a grantor re-granting before receiving its own grant fails."""
        with pytest.raises(PlanValidationError, match="forward dependency"):
            build(
                phase(
                    "wiring",
                    provision("staked", "RewardTracker"),
                    provision("bonus", "RewardTracker"),
                    provision("fee", "RewardTracker"),
                    grant("bonus", "setHandler", "fee", "handler"),
                    grant("staked", "setHandler", "bonus", "handler"),
                )
            )

    def test_explicit_after(self):
        """Test `after` labels add dependencies."""
        plan = build(
            phase(
                "only",
                provision("a", "A"),
                configure("a", "start"),
                configure("a", "finish", after=["a.start"]),
            )
        )

        assert plan.steps[1].step_id in plan.steps[2].depends_on

    def test_cross_phase_dependency_allowed(self, sample_plan):
        """Test later phases may depend on earlier phases."""
        router = sample_plan.step("p02.s03.provision.router")

        assert router.depends_on == {"p02.s01.provision.vault", "p02.s02.provision.usdg"}


class TestPlanValidation:
    """Tests for plan validation failures."""

    def test_no_phases(self):
        with pytest.raises(PlanValidationError, match="no phases"):
            PlanBuilder().build([])

    def test_empty_phase(self):
        with pytest.raises(PlanValidationError, match="declares no steps"):
            build(phase("empty"))

    def test_duplicate_phase_name(self):
        with pytest.raises(PlanValidationError, match="duplicate phase name"):
            build(
                phase("same", provision("a", "A")),
                phase("same", provision("b", "B")),
            )

    def test_duplicate_resource(self):
        with pytest.raises(PlanValidationError, match="provisioned more than once"):
            build(phase("only", provision("a", "A"), provision("a", "B")))

    def test_duplicate_label(self):
        with pytest.raises(PlanValidationError, match="duplicate step label"):
            build(
                phase(
                    "only",
                    provision("a", "A"),
                    configure("a", "setMode", [1]),
                    configure("a", "setMode", [2]),
                )
            )

    def test_duplicate_label_resolved_with_explicit_label(self):
        """Test repeated methods need explicit labels."""
        plan = build(
            phase(
                "only",
                provision("a", "A"),
                configure("a", "setMode", [1], label="a.setMode(1)"),
                configure("a", "setMode", [2], label="a.setMode(2)"),
            )
        )

        assert plan.steps[2].step_id == "p01.s03.configure.a.setMode(2)"

    def test_undeclared_resource(self):
        """Test references to undeclared resources are rejected."""
        with pytest.raises(PlanValidationError, match="undeclared resource 'ghost'"):
            build(phase("only", provision("a", "A", [ref("ghost")])))

    def test_undeclared_after_label(self):
        with pytest.raises(PlanValidationError, match="undeclared step"):
            build(phase("only", provision("a", "A", after=["nowhere"])))

    def test_self_reference(self):
        with pytest.raises(PlanValidationError, match="its own address"):
            build(phase("only", provision("a", "A", [ref("a")])))

    def test_forward_reference_within_phase(self):
        """Test a step may not depend on a later step in its phase."""
        with pytest.raises(PlanValidationError, match="forward dependency"):
            build(
                phase(
                    "only",
                    provision("usdg", "USDG", [ref("vault")]),
                    provision("vault", "Vault"),
                )
            )

    def test_forward_reference_across_phases(self):
        with pytest.raises(PlanValidationError, match="forward dependency"):
            build(
                phase("first", provision("usdg", "USDG", [ref("vault")])),
                phase("second", provision("vault", "Vault")),
            )

    def test_cycle_rejected(self):
        """Test A depends on B and B depends on A."""
        with pytest.raises(PlanValidationError) as exc_info:
            build(
                phase(
                    "only",
                    provision("x", "X"),
                    configure("x", "a", after=["x.b"]),
                    configure("x", "b", after=["x.a"]),
                )
            )

        problems = exc_info.value.problems
        assert any("dependency cycle" in p for p in problems)
        assert exc_info.value.exit_code == ExitCode.VALIDATION_ERROR

    def test_all_problems_reported(self):
        """Test validation collects every problem before raising."""
        with pytest.raises(PlanValidationError) as exc_info:
            build(
                phase(
                    "only",
                    provision("a", "A", [ref("ghost")]),
                    provision("a", "A"),
                ),
                phase("empty"),
            )

        assert len(exc_info.value.problems) >= 3
