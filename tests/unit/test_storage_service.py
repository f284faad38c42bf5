"""
Unit tests for the S3 document store, against a stubbed boto3 client.
"""

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.stub import Stubber

from payables.exceptions import ValidationError
from payables.services.storage_service import StorageService, build_object_key, validate_upload

BUCKET = 'invoices'


@pytest.fixture
def s3_client():
    return boto3.client(
        's3', region_name='us-east-1', aws_access_key_id='test', aws_secret_access_key='test'
    )


@pytest.fixture
def stubbed(s3_client):
    with Stubber(s3_client) as stubber:
        yield StorageService(client=s3_client, bucket=BUCKET), stubber
        stubber.assert_no_pending_responses()


class TestStore:

    def test_store_writes_object(self, stubbed):
        service, stubber = stubbed
        stubber.add_response('head_bucket', {}, {'Bucket': BUCKET})
        stubber.add_response('put_object', {'ETag': '"abc"'})

        key = service.store(b'%PDF-1.4', 7, 3, 'bill.pdf', 'application/pdf')

        assert key.startswith('invoices/7/')
        assert key.endswith('_bill.pdf')

    def test_missing_bucket_is_created_once(self, stubbed):
        service, stubber = stubbed
        stubber.add_client_error('head_bucket', service_error_code='404', http_status_code=404)
        stubber.add_response('create_bucket', {}, {'Bucket': BUCKET})
        stubber.add_response('put_object', {})
        stubber.add_response('put_object', {})

        service.store(b'one', 7, 3, 'a.pdf')
        service.store(b'two', 7, 3, 'b.pdf')

    def test_upload_error_propagates(self, stubbed):
        service, stubber = stubbed
        stubber.add_response('head_bucket', {}, {'Bucket': BUCKET})
        stubber.add_client_error('put_object', service_error_code='AccessDenied', http_status_code=403)

        with pytest.raises(ClientError):
            service.store(b'data', 7, 3, 'bill.pdf')

    def test_bucket_check_error_propagates(self, stubbed):
        service, stubber = stubbed
        stubber.add_client_error('head_bucket', service_error_code='403', http_status_code=403)

        with pytest.raises(ClientError):
            service.store(b'data', 7, 3, 'bill.pdf')


class TestDelete:

    def test_delete(self, stubbed):
        service, stubber = stubbed
        stubber.add_response('delete_object', {}, {'Bucket': BUCKET, 'Key': 'invoices/7/x_bill.pdf'})

        assert service.delete('invoices/7/x_bill.pdf') is True

    def test_delete_failure_returns_false(self, stubbed):
        service, stubber = stubbed
        stubber.add_client_error('delete_object', service_error_code='AccessDenied', http_status_code=403)

        assert service.delete('invoices/7/x_bill.pdf') is False


class TestUploadChecks:

    def test_object_key_strips_path_separators(self):
        key = build_object_key(5, '../secret/bill.pdf')

        assert key.startswith('invoices/5/')
        assert '/' not in key[len('invoices/5/'):]

    def test_size_limit(self):
        with pytest.raises(ValidationError) as exc:
            validate_upload(b'x' * 11, 'bill.pdf', 'application/pdf', max_size=10, allowed_types={'application/pdf'})

        assert 'too large' in exc.value.errors['file']

    def test_type_guessed_from_name(self):
        content_type = validate_upload(b'%PDF', 'bill.pdf', None, max_size=100, allowed_types={'application/pdf'})

        assert content_type == 'application/pdf'

    def test_empty_upload(self):
        with pytest.raises(ValidationError):
            validate_upload(b'', 'bill.pdf', 'application/pdf', max_size=100, allowed_types={'application/pdf'})
