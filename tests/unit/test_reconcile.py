"""
Unit Tests: Reconciliation Decisions
=====================================
Tests:
  1. Missing container -> CREATE (+ start for up, no start for create)
  2. Missing local image -> build or pull step composed with the action
  3. Image drift and run-arg drift -> one RECREATE_AND_START
  4. Running container -> ALREADY_RUNNING / ATTACH_ONLY
  5. Stopped, unchanged container -> START
  6. Start intent skips drift checks
  7. Run signature ignores ordering of set-like arguments
  8. decide() is deterministic and never touches its inputs
"""

from capitan.models import Action, ImageStep, Intent, ObservedState, RunArgs
from capitan.reconcile import decide, run_signature, image_changed

from tests.conftest import make_spec


LOCAL = "sha256:local"
OLD = "sha256:old"


def _observed(spec, **kwargs):
    """Existing container whose image and signature match the declaration."""
    defaults = {
        "exists": True,
        "running": False,
        "image_id": LOCAL,
        "run_signature": run_signature(spec),
        "local_image_id": LOCAL,
    }
    defaults.update(kwargs)
    return ObservedState(**defaults)


# ═══════════════════════════════════════════════════════════
# UP INTENT
# ═══════════════════════════════════════════════════════════

class TestDecideUp:

    def test_missing_container_is_created_and_started(self):
        spec = make_spec("web")
        decision = decide(spec, ObservedState(local_image_id=LOCAL))
        assert decision.action == Action.CREATE
        assert decision.start is True
        assert decision.image_step is None

    def test_missing_image_without_build_is_pulled(self):
        spec = make_spec("web")
        decision = decide(spec, ObservedState())
        assert decision.action == Action.CREATE
        assert decision.image_step == ImageStep.PULL

    def test_missing_image_with_build_is_built(self):
        spec = make_spec("web", build="./web")
        decision = decide(spec, ObservedState())
        assert decision.image_step == ImageStep.BUILD

    def test_image_drift_recreates(self):
        spec = make_spec("web")
        decision = decide(spec, _observed(spec, image_id=OLD, running=True))
        assert decision.action == Action.RECREATE_AND_START
        assert decision.start is True
        assert "image" in decision.reason

    def test_arg_drift_recreates(self):
        spec = make_spec("web")
        decision = decide(spec, _observed(spec, run_signature="stale", running=True))
        assert decision.action == Action.RECREATE_AND_START
        assert "arguments" in decision.reason

    def test_both_drifted_is_a_single_recreate(self):
        spec = make_spec("web")
        decision = decide(spec, _observed(spec, image_id=OLD, run_signature="stale"))
        assert decision.action == Action.RECREATE_AND_START
        assert decision.reason == "different image available"

    def test_running_unchanged(self):
        spec = make_spec("web")
        assert decide(spec, _observed(spec, running=True)).action == Action.ALREADY_RUNNING

    def test_running_unchanged_with_attach(self):
        spec = make_spec("web")
        decision = decide(spec, _observed(spec, running=True), attach=True)
        assert decision.action == Action.ATTACH_ONLY

    def test_stopped_unchanged_starts(self):
        spec = make_spec("web")
        decision = decide(spec, _observed(spec))
        assert decision.action == Action.START

    def test_unknown_image_id_is_not_drift(self):
        assert image_changed(ObservedState(exists=True, image_id="", local_image_id=LOCAL)) is False
        assert image_changed(ObservedState(exists=True, image_id=OLD, local_image_id="")) is False

    def test_image_step_composes_with_running(self):
        spec = make_spec("web")
        decision = decide(spec, _observed(spec, running=True, local_image_id="", image_id=OLD))
        assert decision.action == Action.ALREADY_RUNNING
        assert decision.image_step == ImageStep.PULL


# ═══════════════════════════════════════════════════════════
# CREATE + START INTENTS
# ═══════════════════════════════════════════════════════════

class TestDecideOtherIntents:

    def test_create_intent_never_starts(self):
        spec = make_spec("web")
        decision = decide(spec, ObservedState(local_image_id=LOCAL), intent=Intent.CREATE)
        assert decision.action == Action.CREATE
        assert decision.start is False

    def test_create_intent_recreates_without_start(self):
        spec = make_spec("web")
        decision = decide(spec, _observed(spec, run_signature="stale"), intent=Intent.CREATE)
        assert decision.action == Action.RECREATE_AND_START
        assert decision.start is False

    def test_create_intent_existing_is_noop(self):
        spec = make_spec("web")
        decision = decide(spec, _observed(spec, running=True), intent=Intent.CREATE)
        assert decision.action == Action.NOOP

    def test_create_intent_existing_with_missing_image(self):
        spec = make_spec("web")
        decision = decide(spec, _observed(spec, local_image_id="", image_id=OLD), intent=Intent.CREATE)
        assert decision.action == Action.ENSURE_IMAGE
        assert decision.image_step == ImageStep.PULL

    def test_start_intent_ignores_drift(self):
        spec = make_spec("web")
        decision = decide(spec, _observed(spec, image_id=OLD, run_signature="stale"), intent=Intent.START)
        assert decision.action == Action.START
        assert decision.image_step is None

    def test_start_intent_running(self):
        spec = make_spec("web")
        observed = _observed(spec, running=True)
        assert decide(spec, observed, intent=Intent.START).action == Action.ALREADY_RUNNING
        assert decide(spec, observed, attach=True, intent=Intent.START).action == Action.ATTACH_ONLY


# ═══════════════════════════════════════════════════════════
# RUN SIGNATURE + PURITY
# ═══════════════════════════════════════════════════════════

class TestRunSignature:

    def test_set_like_order_is_ignored(self):
        a = make_spec("web", run_args=RunArgs(
            ports=["80:80", "443:443"], volumes=["/a:/a", "/b:/b"],
            environment={"A": "1", "B": "2"},
        ))
        b = make_spec("web", run_args=RunArgs(
            ports=["443:443", "80:80"], volumes=["/b:/b", "/a:/a"],
            environment={"B": "2", "A": "1"},
        ))
        assert run_signature(a) == run_signature(b)

    def test_command_order_matters(self):
        a = make_spec("web", run_args=RunArgs(command=["nginx", "-g"]))
        b = make_spec("web", run_args=RunArgs(command=["-g", "nginx"]))
        assert run_signature(a) != run_signature(b)

    def test_image_is_part_of_signature(self):
        assert run_signature(make_spec("web", image="nginx:1")) != run_signature(make_spec("web", image="nginx:2"))

    def test_placement_is_not_part_of_signature(self):
        assert run_signature(make_spec("web", placement=1)) == run_signature(make_spec("web", placement=5))


class TestPurity:

    def test_same_inputs_same_decision(self):
        spec = make_spec("web")
        observed = _observed(spec, image_id=OLD, running=True)
        first = decide(spec, observed, attach=True)
        second = decide(spec, observed, attach=True)
        assert first == second

    def test_inputs_untouched(self):
        spec = make_spec("web")
        observed = _observed(spec, running=True)
        before = (spec.model_dump(), observed.model_dump())
        decide(spec, observed)
        assert (spec.model_dump(), observed.model_dump()) == before
