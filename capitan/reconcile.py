"""
Capitan - Reconciliation Engine
════════════════════════════════
Pure decision function: (declared spec, observed state) -> Decision.

No engine calls and no side effects here. The sequencer queries the state
right before calling decide() and carries out whatever comes back.

Decision order for Intent.UP (first match wins):
  1. declared image missing locally  -> image step (build or pull), composable
  2. no container with that name     -> CREATE (+ start)
  3. container image != local image  -> RECREATE_AND_START
  4. run signature drifted           -> RECREATE_AND_START
  5. running                         -> ATTACH_ONLY / ALREADY_RUNNING
  6. stopped, unchanged              -> START
"""

import hashlib
import json
from typing import Optional

from .models import (
    Action, ContainerSpec, Decision, ImageStep, Intent, ObservedState, RunArgs,
)


# ── Run Signature ─────────────────────────────────────────

def _canonical_run_args(image: str, run_args: RunArgs) -> dict:
    """
    Normalize run args so harmless reordering does not look like drift.
    command / entrypoint keep their order; everything set-like is sorted.
    """
    data = run_args.model_dump()
    for key in ("ports", "volumes", "extra_hosts"):
        data[key] = sorted(data[key])
    data["image"] = image
    return data


def run_signature(spec: ContainerSpec) -> str:
    """sha256 over the canonical JSON form of a container's creation arguments."""
    payload = json.dumps(
        _canonical_run_args(spec.image, spec.run_args),
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# ── Helpers ───────────────────────────────────────────────

def image_step_for(spec: ContainerSpec, observed: ObservedState) -> Optional[ImageStep]:
    if observed.local_image_id:
        return None
    return ImageStep.BUILD if spec.build else ImageStep.PULL


def image_changed(observed: ObservedState) -> bool:
    """Both ids known and different. An unknown id never counts as drift."""
    return bool(
        observed.image_id
        and observed.local_image_id
        and observed.image_id != observed.local_image_id
    )


def args_changed(spec: ContainerSpec, observed: ObservedState) -> bool:
    return observed.run_signature != run_signature(spec)


def _running(attach: bool, step: Optional[ImageStep]) -> Decision:
    if attach:
        return Decision(action=Action.ATTACH_ONLY, image_step=step, reason="already running, attaching")
    return Decision(action=Action.ALREADY_RUNNING, image_step=step, reason="already running")


# ── Decide ────────────────────────────────────────────────

def decide(
    spec: ContainerSpec,
    observed: ObservedState,
    attach: bool = False,
    intent: Intent = Intent.UP,
) -> Decision:
    """Compute the action for one container. Deterministic for equal inputs."""
    if intent == Intent.START:
        # existing containers already hold their image
        if observed.running:
            return _running(attach, None)
        return Decision(action=Action.START, reason="stopped")

    step = image_step_for(spec, observed)

    start = intent == Intent.UP

    if not observed.exists:
        return Decision(action=Action.CREATE, image_step=step, start=start, reason="does not exist")

    if image_changed(observed):
        return Decision(
            action=Action.RECREATE_AND_START, image_step=step, start=start,
            reason="different image available",
        )

    if args_changed(spec, observed):
        return Decision(
            action=Action.RECREATE_AND_START, image_step=step, start=start,
            reason="run arguments changed",
        )

    if intent == Intent.CREATE:
        if step is not None:
            return Decision(action=Action.ENSURE_IMAGE, image_step=step, reason="image missing")
        return Decision(action=Action.NOOP, reason="already exists")

    if observed.running:
        return _running(attach, step)

    return Decision(action=Action.START, image_step=step, reason="stopped")
