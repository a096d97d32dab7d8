"""
Near-duplicate detection over a contact list.

Pairs of contacts are scored on two signals:
- Display name: +3 when equal ignoring case, else +2 when one name
  contains the other
- Email: +3 when any address is shared (case-insensitive)

Pairs at or above the threshold are linked, and clusters grow outward
from each unclustered contact so that linking is transitive.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from itertools import combinations

from rapidfuzz import fuzz

from carddav_sync.sync.contact import Contact

# Score contributions
EXACT_NAME_SCORE = 3
PARTIAL_NAME_SCORE = 2
SHARED_EMAIL_SCORE = 3
MAX_PAIR_SCORE = EXACT_NAME_SCORE + SHARED_EMAIL_SCORE

DEFAULT_DUPLICATE_THRESHOLD = 3

logger = logging.getLogger(__name__)


@dataclass
class MergedFields:
    """
    Union of the members' names, emails and phones, in member order.

    Repeats are dropped: names and emails case-insensitively, phones by
    exact value.
    """

    names: list[str] = field(default_factory=list)
    emails: list[str] = field(default_factory=list)
    phones: list[str] = field(default_factory=list)

    @classmethod
    def from_contacts(cls, contacts: list[Contact]) -> "MergedFields":
        merged = cls()
        for contact in contacts:
            if contact.display_name:
                _append_unique(merged.names, contact.display_name.strip(), fold=True)
            for email in contact.email_values():
                _append_unique(merged.emails, email.strip().lower())
            for phone in contact.phone_values():
                _append_unique(merged.phones, phone.strip())
        return merged


def _append_unique(values: list[str], value: str, fold: bool = False) -> None:
    key = value.lower() if fold else value
    if value and key not in [v.lower() if fold else v for v in values]:
        values.append(value)


@dataclass
class DuplicateCluster:
    """
    A group of contacts that likely describe the same person.

    Attributes:
        cluster_id: Identifier unique within one detection run
        members: Contacts in the cluster, seed first
        similarity_score: Mean score of the linked pairs, 0.0 to 1.0
        name_similarity: Mean fuzzy display-name similarity, 0.0 to 1.0
        merged_fields: Names, emails and phones across all members
    """

    cluster_id: str
    members: list[Contact] = field(default_factory=list)
    similarity_score: float = 0.0
    name_similarity: float = 0.0
    merged_fields: MergedFields = field(default_factory=MergedFields)

    def __len__(self) -> int:
        return len(self.members)


class DuplicateDetector:
    """
    Finds clusters of near-duplicate contacts.

    Usage:
        detector = DuplicateDetector()
        for cluster in detector.find_duplicates(contacts):
            print(cluster.cluster_id, [c.display_name for c in cluster.members])
    """

    def __init__(self, threshold: int = DEFAULT_DUPLICATE_THRESHOLD):
        if threshold < 1:
            raise ValueError("Duplicate threshold must be at least 1")
        self.threshold = threshold

    @staticmethod
    def _name(contact: Contact) -> str:
        return (contact.display_name or "").strip().lower()

    def pair_score(self, first: Contact, second: Contact) -> int:
        """
        Score how likely two contacts are duplicates.

        The score is symmetric in its arguments.
        """
        score = 0

        name1 = self._name(first)
        name2 = self._name(second)
        if name1 and name2:
            if name1 == name2:
                score += EXACT_NAME_SCORE
            elif name1 in name2 or name2 in name1:
                score += PARTIAL_NAME_SCORE

        if first.normalized_emails() & second.normalized_emails():
            score += SHARED_EMAIL_SCORE

        return score

    def is_duplicate(self, first: Contact, second: Contact) -> bool:
        """Check whether a pair meets the linking threshold."""
        return self.pair_score(first, second) >= self.threshold

    def find_duplicates(self, contacts: list[Contact]) -> list[DuplicateCluster]:
        """
        Group contacts into duplicate clusters.

        Each contact belongs to at most one cluster and contacts without a
        match are not reported.

        Args:
            contacts: Contacts to examine (not modified)

        Returns:
            Clusters in order of their seed's position in the input
        """
        assigned: set[int] = set()
        clusters: list[DuplicateCluster] = []

        for seed in range(len(contacts)):
            if seed in assigned:
                continue

            members = [seed]
            in_cluster = {seed}
            queue = deque([seed])
            while queue:
                current = queue.popleft()
                for other in range(len(contacts)):
                    if other in assigned or other in in_cluster:
                        continue
                    if self.is_duplicate(contacts[current], contacts[other]):
                        in_cluster.add(other)
                        members.append(other)
                        queue.append(other)

            if len(members) < 2:
                continue

            assigned.update(in_cluster)
            clusters.append(
                self._build_cluster(
                    f"cluster-{len(clusters) + 1}", [contacts[i] for i in members]
                )
            )

        logger.debug(
            f"Found {len(clusters)} duplicate clusters among {len(contacts)} contacts"
        )
        return clusters

    def _build_cluster(self, cluster_id: str, members: list[Contact]) -> DuplicateCluster:
        scores = []
        name_ratios = []
        for first, second in combinations(members, 2):
            score = self.pair_score(first, second)
            if score >= self.threshold:
                scores.append(score)
            name_ratios.append(
                fuzz.token_sort_ratio(self._name(first), self._name(second)) / 100.0
            )

        return DuplicateCluster(
            cluster_id=cluster_id,
            members=members,
            similarity_score=round(sum(scores) / len(scores) / MAX_PAIR_SCORE, 3),
            name_similarity=round(sum(name_ratios) / len(name_ratios), 3),
            merged_fields=MergedFields.from_contacts(members),
        )
