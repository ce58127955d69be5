"""Tests for app.pipeline.mentions — domain mention detection + competitor extraction."""
from app.pipeline.mentions import check_domain_mention, extract_competitors, generate_spaced_versions


class TestGenerateSpacedVersions:

    def test_common_ending(self):
        assert 'lounge lovers' in generate_spaced_versions('loungelovers')

    def test_common_beginning_and_ending(self):
        versions = generate_spaced_versions('therecruitmentcompany')
        assert 'the recruitmentcompany' in versions
        assert 'the recruitment company' in versions

    def test_short_word_has_no_versions(self):
        assert generate_spaced_versions('io') == []


class TestCheckDomainMention:

    def test_not_mentioned(self):
        assert check_domain_mention('Globex is a fine employer.', 'acme.com') == (False, None)

    def test_empty_response(self):
        assert check_domain_mention('', 'acme.com') == (False, None)

    def test_position_thirds(self):
        filler = 'x' * 100
        assert check_domain_mention('Acme ' + filler, 'acme.com') == (True, 1)
        assert check_domain_mention(filler + ' acme ' + filler, 'acme.com') == (True, 2)
        assert check_domain_mention(filler + filler + ' acme.com', 'acme.com') == (True, 3)

    def test_spaced_brand(self):
        response = 'Many people recommend Lounge Lovers for furniture design roles.'
        assert check_domain_mention(response, 'loungelovers.com.au')[0] is True

    def test_digit_boundary(self):
        response = 'Employees at Studio 54 describe the culture as creative.'
        assert check_domain_mention(response, 'studio54.com')[0] is True


class TestExtractCompetitors:

    RESPONSE = ('Acme is well regarded, but Globex and Initech pay more. '
                'Many engineers also consider Hooli for remote work options.')

    def test_names_with_context(self, make_llm):
        llm = make_llm(competitors='["Globex", "Initech", "Umbrella"]')
        found = extract_competitors(llm, self.RESPONSE, 'acme.com')
        assert [c['name'] for c in found] == ['Globex', 'Initech', 'Umbrella']
        assert 'Globex' in found[0]['context']
        assert found[0]['context'].startswith('...')
        assert found[2]['context'] == ''

    def test_excludes_target(self, make_llm):
        llm = make_llm(competitors='["Acme Corp", "Globex"]')
        assert [c['name'] for c in extract_competitors(llm, self.RESPONSE, 'acme.com')] == ['Globex']

    def test_at_most_five(self, make_llm):
        llm = make_llm(competitors='["A1", "B2", "C3", "D4", "E5", "F6"]')
        assert len(extract_competitors(llm, self.RESPONSE, 'acme.com')) == 5

    def test_short_response_skips_call(self, fake_llm):
        assert extract_competitors(fake_llm, 'short', 'acme.com') == []
        assert fake_llm.calls == []

    def test_unparseable_output(self, make_llm):
        llm = make_llm(competitors='Globex and Initech')
        assert extract_competitors(llm, self.RESPONSE, 'acme.com') == []

    def test_provider_failure_returns_empty(self, make_llm):
        llm = make_llm(fail={'generate_text'})
        assert extract_competitors(llm, self.RESPONSE, 'acme.com') == []

    def test_not_counted_as_platform_query(self, fake_llm):
        extract_competitors(fake_llm, self.RESPONSE, 'acme.com')
        assert fake_llm.calls_of('generate_text')[0]['step'] == 'competitor_extraction'
        assert fake_llm.platform_calls == []
