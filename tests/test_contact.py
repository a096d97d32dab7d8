"""
Unit tests for the Contact data model.

Tests display-name derivation, value normalization, identification state
and copying.
"""

from carddav_sync.sync.contact import (
    Contact,
    ContactState,
    EmailAddress,
    Organization,
    PhoneNumber,
    PostalAddress,
    generate_contact_id,
    search_contacts,
    unique_emails,
)


class TestContactBasics:
    """Tests for basic Contact instantiation and defaults."""

    def test_default_values(self):
        """Test that a bare contact starts local and empty."""
        contact = Contact(display_name='Jane Doe')
        assert contact.resource_location == ''
        assert contact.entity_tag == ''
        assert contact.emails == []
        assert contact.phone_numbers == []
        assert contact.organizations == []
        assert contact.addresses == []
        assert contact.notes is None
        assert contact.state == ContactState.LOCAL

    def test_id_is_generated(self):
        """Test that each contact gets its own identifier."""
        assert Contact().id != Contact().id
        assert len(generate_contact_id()) == 36

    def test_display_name_derived_from_given_and_family(self):
        """Test display name synthesis when none is given."""
        contact = Contact(given_name='Jane', family_name='Doe')
        assert contact.display_name == 'Jane Doe'

    def test_display_name_derived_from_given_only(self):
        """Test display name synthesis trims missing parts."""
        contact = Contact(given_name='Jane')
        assert contact.display_name == 'Jane'

    def test_explicit_display_name_wins(self):
        """Test that an explicit display name is kept."""
        contact = Contact(display_name='Dr. J', given_name='Jane', family_name='Doe')
        assert contact.display_name == 'Dr. J'


class TestContactNormalization:
    """Tests for the list-field invariants."""

    def test_empty_values_are_removed(self):
        """Test that empty strings never survive in list fields."""
        contact = Contact(
            display_name='Jane',
            emails=[EmailAddress(''), EmailAddress('jane@example.com')],
            phone_numbers=[PhoneNumber(''), PhoneNumber('555-0100')],
            organizations=[Organization(), Organization(name='Acme')],
            addresses=[PostalAddress(), PostalAddress(locality='Berlin')],
        )
        assert contact.email_values() == ['jane@example.com']
        assert contact.phone_values() == ['555-0100']
        assert [o.name for o in contact.organizations] == ['Acme']
        assert len(contact.addresses) == 1

    def test_emails_unique_case_insensitively(self):
        """Test that repeated emails differing in case collapse to the first."""
        contact = Contact(
            display_name='Jane',
            emails=[
                EmailAddress('Jane@Example.com', 'work'),
                EmailAddress('jane@example.com', 'home'),
            ],
        )
        assert len(contact.emails) == 1
        assert contact.emails[0].value == 'Jane@Example.com'
        assert contact.emails[0].type == 'work'

    def test_unique_emails_preserves_order(self):
        """Test the helper keeps first occurrences in order."""
        result = unique_emails(
            [EmailAddress('b@x.com'), EmailAddress('a@x.com'), EmailAddress('B@x.com')]
        )
        assert [e.value for e in result] == ['b@x.com', 'a@x.com']

    def test_normalized_emails(self):
        """Test the lowercase comparison set."""
        contact = Contact(emails=[EmailAddress(' Jane@Example.COM ')])
        assert contact.normalized_emails() == {'jane@example.com'}


class TestContactState:
    """Tests for identification and validity."""

    def test_is_identified_requires_resource_location(self):
        """Test that a contact is identified once it has a location."""
        assert not Contact(display_name='Jane').is_identified
        assert Contact(display_name='Jane', resource_location='/c/1.vcf').is_identified

    def test_is_valid_with_name_or_email(self):
        """Test validity rules."""
        assert Contact(display_name='Jane').is_valid()
        assert Contact(emails=[EmailAddress('jane@example.com')]).is_valid()
        assert not Contact(phone_numbers=[PhoneNumber('555-0100')]).is_valid()


class TestContactCopy:
    """Tests for Contact.copy()."""

    def test_copy_is_independent(self):
        """Test that list changes on a copy do not leak into the original."""
        original = Contact(display_name='Jane', emails=[EmailAddress('jane@example.com')])
        duplicate = original.copy()
        duplicate.emails.append(EmailAddress('other@example.com'))
        assert original.email_values() == ['jane@example.com']

    def test_copy_with_changes(self):
        """Test replacing fields while copying."""
        original = Contact(display_name='Jane', entity_tag='"1"')
        changed = original.copy(entity_tag='"2"', state=ContactState.SYNCED)
        assert changed.entity_tag == '"2"'
        assert changed.state == ContactState.SYNCED
        assert changed.id == original.id
        assert original.entity_tag == '"1"'

    def test_repr_contains_name_and_state(self):
        """Test the readable representation."""
        text = repr(Contact(display_name='Jane'))
        assert "'Jane'" in text
        assert "'local'" in text


class TestContactSearch:
    """Tests for Contact.matches() and search_contacts()."""

    def jane(self) -> Contact:
        return Contact(
            display_name='Jane Doe',
            emails=[EmailAddress('jane@example.com')],
            phone_numbers=[PhoneNumber('+1 555 0100')],
            organizations=[Organization(name='Acme Corp', title='Engineer')],
        )

    def test_matches_each_field_ignoring_case(self):
        """Test name, email, phone and organization matching."""
        jane = self.jane()
        assert jane.matches('jane d')
        assert jane.matches('EXAMPLE.COM')
        assert jane.matches('555 0100')
        assert jane.matches('acme')

    def test_title_and_notes_are_not_searched(self):
        """Test that only the listed fields take part."""
        jane = self.jane().copy(notes='likes hiking')
        assert not jane.matches('engineer')
        assert not jane.matches('hiking')

    def test_empty_query_matches_everything(self):
        """Test that a blank query keeps every contact."""
        assert Contact().matches('  ')

    def test_search_keeps_order(self):
        """Test filtering a list."""
        john = Contact(display_name='John Roe', emails=[EmailAddress('john@acme.com')])
        bob = Contact(display_name='Bob')
        jane = self.jane()
        assert search_contacts([jane, bob, john], 'acme') == [jane, john]
