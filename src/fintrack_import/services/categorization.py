"""Merchant categorization service.

Learns categories from human confirmations and applies them to new lines:
- Every confirmation of a category for a merchant counts towards its rule
- A rule confirmed at least `auto_apply_threshold` times categorizes new lines
  on import (source AUTO_RULE, with a back-reference to the rule)
- Below the threshold a rule is only offered as a suggestion
- Rules belong to one user and never apply to another user's lines
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fintrack_import.matching.merchant_key import normalize_merchant_key
from fintrack_import.state_store.sqlite_store import CategorizationSource

if TYPE_CHECKING:
    from fintrack_import.state_store import MerchantRuleRecord, StateStore

logger = logging.getLogger(__name__)

DEFAULT_AUTO_APPLY_THRESHOLD = 3


class LineNotFoundError(Exception):
    """Raised when a transaction line does not exist or belongs to another user."""

    pass


@dataclass
class CategorySuggestion:
    """A category offered for a description by a learned rule."""

    category: str
    rule_id: int
    merchant_key: str
    confirmation_count: int
    auto_apply: bool


class CategorizationService:
    """Applies and learns merchant → category rules.

    Usage:
        service = CategorizationService(store)
        service.apply_rules(user_id, result.created_line_ids)
        service.record_confirmation(user_id, line_id, "Transport")
    """

    def __init__(
        self,
        state_store: StateStore,
        auto_apply_threshold: int = DEFAULT_AUTO_APPLY_THRESHOLD,
    ) -> None:
        self.store = state_store
        self.auto_apply_threshold = auto_apply_threshold

    def find_best_rule(
        self, user_id: int, description: str, merchant_key: str | None
    ) -> MerchantRuleRecord | None:
        """Pick the user's strongest rule for a description.

        A rule is a candidate when its raw pattern occurs in the description
        (case-insensitive) or its merchant key equals `merchant_key`. The most
        confirmed candidate wins; ties go to the most recently confirmed.
        """
        lowered = description.lower()
        candidates = [
            rule
            for rule in self.store.list_merchant_rules(user_id)
            if (rule.pattern and rule.pattern.lower() in lowered)
            or (merchant_key is not None and rule.merchant_key == merchant_key)
        ]
        if not candidates:
            return None
        return max(
            candidates,
            key=lambda rule: (rule.confirmation_count, rule.last_confirmed_at or ""),
        )

    def apply_rules(self, user_id: int, line_ids: Iterable[int]) -> int:
        """Categorize uncategorized lines from auto-apply rules.

        Stores the merchant key on every line looked at.

        Returns:
            Number of lines categorized automatically
        """
        categorized = 0
        examined = 0

        for line_id in line_ids:
            line = self.store.get_transaction_line(line_id)
            if line is None or line.category is not None:
                continue
            examined += 1

            merchant_key = normalize_merchant_key(line.description)
            self.store.set_line_merchant_key(line.id, merchant_key)

            rule = self.find_best_rule(user_id, line.description, merchant_key)
            if rule is None:
                continue
            if not rule.is_auto_apply(self.auto_apply_threshold):
                logger.debug(
                    f"Rule {rule.id} suggests '{rule.category}' for '{line.description}' "
                    f"({rule.confirmation_count}/{self.auto_apply_threshold} confirmations)"
                )
                continue

            self.store.set_line_category(
                line.id, rule.category, CategorizationSource.AUTO_RULE, merchant_rule_id=rule.id
            )
            self.store.increment_rule_applied(rule.id)
            categorized += 1
            logger.debug(f"Auto-applied '{rule.category}' to '{line.description}' (rule {rule.id})")

        logger.info(f"Auto-categorized {categorized} of {examined} lines for user {user_id}")
        return categorized

    def suggest_category(self, user_id: int, description: str) -> CategorySuggestion | None:
        """Offer the category of the user's best rule for a description, if any."""
        merchant_key = normalize_merchant_key(description)
        rule = self.find_best_rule(user_id, description, merchant_key)
        if rule is None:
            return None
        return CategorySuggestion(
            category=rule.category,
            rule_id=rule.id,
            merchant_key=rule.merchant_key,
            confirmation_count=rule.confirmation_count,
            auto_apply=rule.is_auto_apply(self.auto_apply_threshold),
        )

    def record_confirmation(
        self, user_id: int, line_id: int, category: str
    ) -> MerchantRuleRecord | None:
        """Record that a user put a line in `category`.

        Sets the line's category (source MANUAL) and feeds the merchant's rule:
        created on first confirmation, counted up when the category repeats,
        overridden (count back to 1) when it changes.

        Returns:
            The updated rule, or None if the description yields no merchant key

        Raises:
            LineNotFoundError: If the line is unknown or owned by another user
        """
        line = self.store.get_transaction_line(line_id)
        if line is None or self.store.get_line_owner(line_id) != user_id:
            raise LineNotFoundError(f"Transaction line {line_id} not found")

        self.store.set_line_category(line.id, category, CategorizationSource.MANUAL)

        merchant_key = line.merchant_key or normalize_merchant_key(line.description)
        if merchant_key is None:
            logger.debug(f"No merchant key for '{line.description}'; no rule recorded")
            return None
        if line.merchant_key is None:
            self.store.set_line_merchant_key(line.id, merchant_key)

        previous = self.store.get_merchant_rule(user_id, merchant_key)
        rule = self.store.confirm_merchant_rule(user_id, merchant_key, line.description, category)

        if previous is None:
            logger.info(f"Created rule {merchant_key} -> {category} for user {user_id}")
        elif previous.category == category:
            logger.info(
                f"Confirmed rule {merchant_key} -> {category} "
                f"({rule.confirmation_count} confirmations)"
            )
        else:
            logger.info(
                f"Overrode rule {merchant_key} from '{previous.category}' to '{category}' "
                f"({rule.times_overridden} overrides)"
            )
        return rule

    def list_rules(self, user_id: int) -> list[MerchantRuleRecord]:
        """List a user's rules, most confirmed first."""
        return self.store.list_merchant_rules(user_id)
