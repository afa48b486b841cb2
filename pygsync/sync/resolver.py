"""Conflict resolution policies.

Each conflict is resolved once, before execution starts, using only the
metadata captured in the plan. Resolution never re-reads either store, so
the outcome for a given plan and policy does not depend on store changes
during the run.
"""

import logging
from dataclasses import replace
from collections.abc import Iterable
from typing import Callable, Optional

from ..exceptions import ConflictPolicyExhausted
from ..utils import conflict_copy_path, now_ms
from .models import ConflictCase, ConflictPolicy, ResolutionKind, ResolvedAction

logger = logging.getLogger(__name__)


class ConflictResolver:
    """Turns conflicts into concrete actions according to one policy."""

    def __init__(
        self,
        policy: "ConflictPolicy | str" = ConflictPolicy.PREFER_NEWER,
        clock: Optional[Callable[[], int]] = None,
    ):
        """Initialize conflict resolver.

        Args:
            policy: Policy applied to every conflict
            clock: Millisecond clock used to name keep-both copies
        """
        self.policy = ConflictPolicy.parse(policy)
        self.clock = clock or now_ms

    def resolve(self, case: ConflictCase) -> ResolvedAction:
        """Resolve a single conflict.

        Args:
            case: Conflicting local and remote entries

        Returns:
            The action to carry out

        Raises:
            ConflictPolicyExhausted: If the policy has no rule (a bug)
        """
        policy = self.policy

        if policy == ConflictPolicy.PREFER_NEWER:
            local_mtime = case.local.local_modified_at or 0
            remote_mtime = case.remote.remote_modified_at or 0
            # Ties go to the remote side
            policy = (
                ConflictPolicy.PREFER_LOCAL
                if local_mtime > remote_mtime
                else ConflictPolicy.PREFER_REMOTE
            )

        if policy == ConflictPolicy.PREFER_LOCAL:
            action = ResolvedAction(
                kind=ResolutionKind.UPLOAD,
                case=case,
                entry=_with_remote_id(case),
            )
        elif policy == ConflictPolicy.PREFER_REMOTE:
            action = ResolvedAction(
                kind=ResolutionKind.DOWNLOAD, case=case, entry=case.remote
            )
        elif policy == ConflictPolicy.KEEP_BOTH:
            action = ResolvedAction(
                kind=ResolutionKind.KEEP_BOTH,
                case=case,
                entry=case.remote,
                conflict_copy_path=conflict_copy_path(case.path, self.clock()),
            )
        else:
            raise ConflictPolicyExhausted(
                f"No resolution for {case.path} under policy {self.policy!r}"
            )

        logger.debug(f"Resolved conflict {case.path} -> {action.kind.value}")
        return action

    def resolve_all(self, cases: Iterable[ConflictCase]) -> list[ResolvedAction]:
        """Resolve every conflict of a plan, keeping plan order."""
        return [self.resolve(case) for case in cases]


def _with_remote_id(case: ConflictCase):
    return replace(
        case.local,
        remote_id=case.remote.remote_id,
        remote_modified_at=case.remote.remote_modified_at,
    )
