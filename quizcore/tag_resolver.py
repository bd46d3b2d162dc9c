"""
Resolve-or-create for categories and labels.

resolve_or_create() returns the existing tag for a (kind, name, scope) key
or creates it. Concurrent callers racing on the same key all get the same
tag: the loser's insert is rejected by the store's uniqueness constraint,
and the resolver re-reads the winner's row instead of surfacing an error.

Authorization is not enforced here. Callers that may not create global
tags must downgrade the requested visibility before calling.
"""

import logging
import uuid
from typing import Optional

from .errors import ProblemError, UniqueViolation, ValidationError
from .fingerprint import normalize_text
from .protocol import ItemStoreProtocol
from .types import TAG_KIND_CATEGORY, Tag, Visibility, utc_now

logger = logging.getLogger(__name__)

DEFAULT_MAX_NAME_LENGTH = 100


def normalize_tag_name(name: Optional[str]) -> str:
    """Trim, lowercase, and collapse internal whitespace."""
    return normalize_text(name or "")


class TagResolver:
    """
    Resolves names to durable Tag entities of one kind.

    Stateless apart from its store; one instance can serve any number of
    sequential calls.
    """

    def __init__(
        self,
        store: ItemStoreProtocol,
        *,
        kind: str = TAG_KIND_CATEGORY,
        max_name_length: int = DEFAULT_MAX_NAME_LENGTH,
    ):
        self._store = store
        self._kind = kind
        self._max_name_length = max_name_length

    @property
    def kind(self) -> str:
        return self._kind

    def resolve_or_create(
        self,
        name: str,
        visibility: Visibility,
        owner: Optional[str],
        is_privileged: bool,
    ) -> Tag:
        """
        Return the tag for ``name`` in the requested scope, creating it if absent.

        Resolving never mutates an existing tag.

        Args:
            name: Human-supplied name; compared after normalization
            visibility: Private (scoped to owner) or global
            owner: Owning user; required for private tags
            is_privileged: Whether the caller may use global scope (advisory)

        Raises:
            ValidationError: empty or oversize name, private tag without owner
            ProblemError: store failure
        """
        display_name = " ".join((name or "").split())
        key = normalize_tag_name(name)
        if not key:
            raise ValidationError(
                f"{self._kind.capitalize()}.InvalidName",
                f"{self._kind.capitalize()} name cannot be empty",
            )
        if len(key) > self._max_name_length:
            raise ValidationError(
                f"{self._kind.capitalize()}.NameTooLong",
                f"{self._kind.capitalize()} name must not exceed "
                f"{self._max_name_length} characters",
            )
        if visibility is Visibility.PRIVATE and not owner:
            raise ValidationError(
                f"{self._kind.capitalize()}.MissingOwner",
                f"Private {self._kind} requires an owner",
            )
        if visibility is Visibility.GLOBAL and not is_privileged:
            logger.warning(
                "Global %s %r requested by non-privileged caller %s",
                self._kind, key, owner,
            )

        scope_owner = owner if visibility is Visibility.PRIVATE else None
        try:
            existing = self._store.find_tag(self._kind, key, visibility, scope_owner)
            if existing is not None:
                return existing

            tag = Tag(
                id=uuid.uuid4().hex,
                kind=self._kind,
                name=key,
                display_name=display_name,
                visibility=visibility,
                owner=scope_owner,
                created_at=utc_now(),
            )
            try:
                self._store.insert_tag(tag)
            except UniqueViolation:
                # Lost a creation race; the winner's row is now visible.
                # One re-read only: a second miss means something is wrong.
                winner = self._store.find_tag(self._kind, key, visibility, scope_owner)
                if winner is None:
                    raise ProblemError(
                        f"{self._kind.capitalize()}.ResolveFailed",
                        f"{self._kind.capitalize()} {key!r} was rejected as a "
                        f"duplicate but could not be found",
                    )
                logger.info("Absorbed concurrent creation of %s %r", self._kind, key)
                return winner
        except (ValidationError, ProblemError):
            raise
        except Exception as e:
            logger.error("Error resolving or creating %s %r: %s", self._kind, key, e)
            raise ProblemError(
                f"{self._kind.capitalize()}.ResolveFailed",
                f"Failed to resolve or create {self._kind}: {e}",
            ) from e

        if visibility is Visibility.PRIVATE:
            logger.info("Created private %s %r for %s", self._kind, key, owner)
        else:
            logger.info("Created global %s %r", self._kind, key)
        return tag
