"""Tests for terraformer/extractor.py - Terraform error extraction.

Tests verify:
1. Error block detection and normalization of a single log
2. UUID-insensitive deduplication across Pods
3. Deterministic, attributed output
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from terraformer.extractor import (
    ErrorExtractor,
    TerraformErrorExtractor,
    find_terraform_errors,
    retrieve_terraform_errors,
)


MULTI_ERROR_LOG = """Error applying plan:

2 error(s) occurred:

* aws_vpc.vpc: VpcLimitExceeded: The maximum number of VPCs has been reached.
* aws_iam_role.nodes: EntityAlreadyExists: Role with name shoot1-nodes already exists.

Terraform does not automatically rollback in the face of errors.
Instead, your Terraform state file has been partially updated with
any resources that successfully completed. Please address the error
above and apply again to incrementally change your infrastructure.
"""


class TestFindTerraformErrors:
    """Test parsing of a single log."""

    def test_no_error_returns_empty(self):
        """Logs without an error block should yield an empty string."""
        assert find_terraform_errors("Apply complete! Resources: 1 added, 0 changed, 0 destroyed.") == ''

    def test_empty_log(self):
        assert find_terraform_errors('') == ''

    def test_bullets_sorted_and_noise_dropped(self):
        """Bullets should be sorted and header/footer lines removed."""
        result = find_terraform_errors(MULTI_ERROR_LOG)
        assert result == (
            "* aws_iam_role.nodes: EntityAlreadyExists: Role with name shoot1-nodes already exists.\n"
            "* aws_vpc.vpc: VpcLimitExceeded: The maximum number of VPCs has been reached."
        )

    def test_rollback_note_stripped(self):
        """The explanatory rollback note should not leak into the message."""
        result = find_terraform_errors(MULTI_ERROR_LOG)
        assert 'rollback' not in result
        assert 'partially updated' not in result

    def test_uuid_replaced(self, error_log):
        """UUID-shaped tokens should be replaced by a placeholder."""
        result = find_terraform_errors(error_log('8F4A2B1C-1D2E-4F5A-9B8C-7D6E5F4A3B2C'))
        assert '<omitted>' in result
        assert '8F4A2B1C' not in result
        assert result.startswith('* aws_route53_record.record: InvalidChangeBatch')

    def test_errors_header_variant(self):
        """'Errors:' headers should be recognized as well."""
        log = "Errors:\n\n  * provider.aws: no valid credential sources found\n"
        result = find_terraform_errors(log)
        assert result == "* provider.aws: no valid credential sources found"

    def test_error_without_bullets_keeps_message(self):
        """A header without bullets should keep the trimmed message."""
        result = find_terraform_errors("Error loading config: main.tf:3: unknown resource\n\n\n")
        assert result == "main.tf:3: unknown resource"


class TestRetrieveTerraformErrors:
    """Test aggregation across Pods."""

    def test_none_when_no_errors(self):
        """No recognizable error in any log should give None."""
        assert retrieve_terraform_errors({'pod-a': 'all good', 'pod-b': ''}) is None

    def test_none_for_empty_input(self):
        assert retrieve_terraform_errors({}) is None

    def test_attribution_format(self, error_log):
        """Entries should name the reporting Pod."""
        errors = retrieve_terraform_errors({'job-0': error_log()})
        assert len(errors) == 1
        assert errors[0].startswith("-> Pod 'job-0' reported:\n* aws_route53_record.record")

    def test_dedup_ignores_uuids(self, error_log):
        """Errors differing only by request id should collapse into one entry."""
        logs = {
            'job-1': error_log('11111111-2222-3333-4444-555555555555'),
            'job-0': error_log('aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee'),
        }
        errors = retrieve_terraform_errors(logs)
        assert len(errors) == 1
        # First Pod in name order wins the attribution
        assert "Pod 'job-0'" in errors[0]

    def test_distinct_errors_kept(self, error_log):
        """Different errors should each get an entry."""
        logs = {'job-0': error_log(), 'job-1': MULTI_ERROR_LOG, 'job-2': 'fine'}
        errors = retrieve_terraform_errors(logs)
        assert len(errors) == 2

    def test_ordering_deterministic(self, error_log):
        """Same error set should produce the same order regardless of input order."""
        first = retrieve_terraform_errors({'a': MULTI_ERROR_LOG, 'b': error_log()})
        second = retrieve_terraform_errors({'b': error_log(), 'a': MULTI_ERROR_LOG})
        assert first == second


class TestTerraformErrorExtractor:
    """Test the extractor wrapper."""

    def test_satisfies_protocol(self):
        assert isinstance(TerraformErrorExtractor(), ErrorExtractor)

    def test_extract_delegates(self, error_log):
        logs = {'job-0': error_log()}
        assert TerraformErrorExtractor().extract(logs) == retrieve_terraform_errors(logs)
