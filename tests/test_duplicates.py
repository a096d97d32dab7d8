"""
Unit tests for duplicate detection.

Tests pair scoring, threshold handling, transitive clustering and the
reported cluster scores.
"""

import pytest

from carddav_sync.sync.contact import Contact, EmailAddress, PhoneNumber
from carddav_sync.sync.duplicates import (
    EXACT_NAME_SCORE,
    PARTIAL_NAME_SCORE,
    SHARED_EMAIL_SCORE,
    DuplicateDetector,
    MergedFields,
)


def contact(name: str = '', *emails: str) -> Contact:
    return Contact(display_name=name, emails=[EmailAddress(e) for e in emails])


@pytest.fixture
def detector():
    return DuplicateDetector()


class TestPairScore:
    """Tests for pair_score()."""

    def test_exact_name_ignores_case(self, detector):
        """Test the exact display-name signal."""
        assert detector.pair_score(contact('Jane Doe'), contact('jane doe')) == (
            EXACT_NAME_SCORE
        )

    def test_name_containment(self, detector):
        """Test the substring display-name signal."""
        assert detector.pair_score(contact('Jane Doe'), contact('Jane Doe Jr.')) == (
            PARTIAL_NAME_SCORE
        )

    def test_shared_email_ignores_case(self, detector):
        """Test the email signal."""
        first = contact('A', 'Jane@Example.com')
        second = contact('B', 'jane@example.com ')
        assert detector.pair_score(first, second) == SHARED_EMAIL_SCORE

    def test_signals_add_up(self, detector):
        """Test that name and email scores combine."""
        first = contact('Jane Doe', 'j@x.com')
        second = contact('JANE DOE', 'j@x.com')
        assert detector.pair_score(first, second) == 6

    def test_empty_names_do_not_match(self, detector):
        """Test that blank names never count as containment."""
        assert detector.pair_score(contact('', 'a@x.com'), contact('Jane')) == 0

    def test_symmetric(self, detector):
        """Test that argument order does not change the score."""
        first = contact('Jane Doe', 'j@x.com')
        second = contact('Jane Doe Jr.', 'j@x.com', 'other@y.com')
        assert detector.pair_score(first, second) == detector.pair_score(second, first)


class TestFindDuplicates:
    """Tests for find_duplicates()."""

    def test_partial_name_alone_is_below_threshold(self, detector):
        """Test that only the exact-name pair is clustered."""
        a = contact('Jane Doe', 'j@x.com')
        b = contact('Jane Doe', 'other@y.com')
        c = contact('Jane Doe Jr.')

        clusters = detector.find_duplicates([a, b, c])

        assert len(clusters) == 1
        assert clusters[0].members == [a, b]

    def test_clustering_is_transitive(self, detector):
        """Test that A-B and B-C links put all three in one cluster."""
        a = contact('Alice Smith', 'alice@x.com')
        b = contact('A. Smith', 'alice@x.com', 'as@work.com')
        c = contact('Smith, A.', 'AS@work.com')

        assert not detector.is_duplicate(a, c)
        clusters = detector.find_duplicates([a, b, c])

        assert len(clusters) == 1
        assert set(id(m) for m in clusters[0].members) == {id(a), id(b), id(c)}

    def test_membership_independent_of_order(self, detector):
        """Test that reordering the input yields the same groups."""
        contacts = [
            contact('Jane Doe', 'j@x.com'),
            contact('Bob Roe', 'bob@y.com'),
            contact('jane doe'),
            contact('Robert', 'BOB@y.com'),
            contact('Solo'),
        ]

        def groups(items):
            return {
                frozenset(m.id for m in cluster.members)
                for cluster in detector.find_duplicates(items)
            }

        assert groups(contacts) == groups(list(reversed(contacts)))
        assert len(groups(contacts)) == 2

    def test_each_contact_in_one_cluster(self, detector):
        """Test that clusters are disjoint."""
        contacts = [contact('Jane Doe', 'j@x.com') for _ in range(3)]
        contacts += [contact('Bob', 'b@y.com'), contact('Bob', 'b@y.com')]

        clusters = detector.find_duplicates(contacts)

        seen = [m.id for cluster in clusters for m in cluster.members]
        assert len(seen) == len(set(seen)) == 5
        assert [c.cluster_id for c in clusters] == ['cluster-1', 'cluster-2']

    def test_no_duplicates(self, detector):
        """Test that singletons are not reported."""
        assert detector.find_duplicates([contact('A'), contact('B')]) == []
        assert detector.find_duplicates([]) == []

    def test_input_is_not_modified(self, detector):
        """Test that the caller's list is left alone."""
        contacts = [contact('Jane'), contact('jane')]
        detector.find_duplicates(contacts)
        assert [c.display_name for c in contacts] == ['Jane', 'jane']


class TestClusterScores:
    """Tests for the scores reported on a cluster."""

    def test_full_match_scores_one(self, detector):
        """Test that identical name and email give similarity 1.0."""
        clusters = detector.find_duplicates(
            [contact('Jane Doe', 'j@x.com'), contact('Jane Doe', 'j@x.com')]
        )
        assert clusters[0].similarity_score == 1.0
        assert clusters[0].name_similarity == 1.0

    def test_email_only_match(self, detector):
        """Test the score of a pair linked by email alone."""
        clusters = detector.find_duplicates(
            [contact('Jane Doe', 'j@x.com'), contact('Work Account', 'j@x.com')]
        )
        assert clusters[0].similarity_score == 0.5
        assert 0.0 <= clusters[0].name_similarity < 1.0
        assert len(clusters[0]) == 2


class TestMergedFields:
    """Tests for the merged names, emails and phones of a cluster."""

    def test_union_in_member_order(self, detector):
        """Test that each value appears once, first spelling kept."""
        first = Contact(
            display_name='Jane Doe',
            emails=[EmailAddress('j@x.com')],
            phone_numbers=[PhoneNumber('555-0100')],
        )
        second = Contact(
            display_name='jane doe',
            emails=[EmailAddress('J@X.com'), EmailAddress('jane@work.com')],
            phone_numbers=[PhoneNumber('555-0100'), PhoneNumber('555-0199')],
        )

        merged = detector.find_duplicates([first, second])[0].merged_fields

        assert merged.names == ['Jane Doe']
        assert merged.emails == ['j@x.com', 'jane@work.com']
        assert merged.phones == ['555-0100', '555-0199']

    def test_from_contacts_skips_empty_names(self):
        """Test that unnamed members add no name entry."""
        merged = MergedFields.from_contacts(
            [contact('', 'a@x.com'), contact('Ann', 'a@x.com')]
        )
        assert merged.names == ['Ann']
        assert merged.emails == ['a@x.com']
        assert merged.phones == []


class TestThreshold:
    """Tests for custom thresholds."""

    def test_higher_threshold_requires_both_signals(self):
        """Test that threshold 6 needs name and email."""
        detector = DuplicateDetector(threshold=6)
        assert detector.find_duplicates(
            [contact('Jane', 'j@x.com'), contact('Jane', 'other@x.com')]
        ) == []
        assert len(
            detector.find_duplicates([contact('Jane', 'j@x.com'), contact('jane', 'J@x.com')])
        ) == 1

    def test_lower_threshold_accepts_containment(self):
        """Test that threshold 2 links partial names."""
        detector = DuplicateDetector(threshold=2)
        assert len(detector.find_duplicates([contact('Jane'), contact('Jane Doe')])) == 1

    def test_invalid_threshold(self):
        """Test that thresholds below 1 are rejected."""
        with pytest.raises(ValueError):
            DuplicateDetector(threshold=0)
