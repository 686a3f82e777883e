import unittest
from unittest.mock import MagicMock, patch

from botocore.exceptions import ClientError

from storage import InMemoryStorageClient, S3StorageClient, StorageError, build_storage_client


def client_error(code, operation='HeadObject'):
    return ClientError({'Error': {'Code': code, 'Message': code}}, operation)


class InMemoryStorageTests(unittest.TestCase):
    def setUp(self):
        self.storage = InMemoryStorageClient()

    def test_upload_refuses_to_overwrite(self):
        self.storage.upload('images', 'generated/a.png', b'1', content_type='image/png')
        with self.assertRaises(StorageError):
            self.storage.upload('images', 'generated/a.png', b'2')
        self.assertEqual(self.storage.get_bytes('images', 'generated/a.png'), b'1')

    def test_upsert_overwrites(self):
        self.storage.upload('avatars', 'u/a.png', b'1')
        self.storage.upload('avatars', 'u/a.png', b'2', upsert=True)
        self.assertEqual(self.storage.get_bytes('avatars', 'u/a.png'), b'2')

    def test_list_and_remove(self):
        self.storage.upload('avatars', 'u1/a.png', b'1')
        self.storage.upload('avatars', 'u1/b.png', b'1')
        self.storage.upload('avatars', 'u2/a.png', b'1')
        self.assertEqual(self.storage.list_paths('avatars', 'u1/'), ['u1/a.png', 'u1/b.png'])
        self.storage.remove('avatars', ['u1/a.png', 'missing.png'])
        self.assertEqual(self.storage.list_paths('avatars', 'u1/'), ['u1/b.png'])

    def test_public_url(self):
        self.assertEqual(
            self.storage.get_public_url('images', 'generated/a b.png'),
            'https://storage.test/object/public/images/generated/a%20b.png',
        )


class S3StorageClientTests(unittest.TestCase):
    def setUp(self):
        patcher = patch('storage.boto3.client')
        self.boto_client = patcher.start().return_value
        self.addCleanup(patcher.stop)
        self.storage = S3StorageClient(
            endpoint='https://project.storage.test/storage/v1/s3',
            region='eu-central-1',
            access_key_id='key',
            secret_access_key='secret',
            public_base_url='https://project.storage.test/storage/v1/object/public',
        )

    def test_upload_new_object(self):
        self.boto_client.head_object.side_effect = client_error('404')
        self.storage.upload('images', 'generated/x.png', b'data', content_type='image/png')
        self.boto_client.put_object.assert_called_once_with(
            Bucket='images', Key='generated/x.png', Body=b'data', ContentType='image/png',
        )

    def test_upload_existing_object_without_upsert_fails(self):
        self.boto_client.head_object.return_value = {}
        with self.assertRaises(StorageError):
            self.storage.upload('images', 'generated/x.png', b'data')
        self.boto_client.put_object.assert_not_called()

    def test_upload_wraps_client_errors(self):
        self.boto_client.head_object.side_effect = client_error('404')
        self.boto_client.put_object.side_effect = client_error('AccessDenied', 'PutObject')
        with self.assertRaises(StorageError):
            self.storage.upload('images', 'generated/x.png', b'data')

    def test_remove_reports_per_key_errors(self):
        self.boto_client.delete_objects.return_value = {'Errors': [{'Key': 'a.png'}]}
        with self.assertRaises(StorageError):
            self.storage.remove('images', ['a.png'])

    def test_remove_nothing_is_a_noop(self):
        self.storage.remove('images', [])
        self.boto_client.delete_objects.assert_not_called()

    def test_list_paths_follows_pages(self):
        paginator = MagicMock()
        paginator.paginate.return_value = [
            {'Contents': [{'Key': 'u1/a.png'}]},
            {'Contents': [{'Key': 'u1/b.png'}]},
            {},
        ]
        self.boto_client.get_paginator.return_value = paginator
        self.assertEqual(self.storage.list_paths('avatars', 'u1/'), ['u1/a.png', 'u1/b.png'])

    def test_public_url(self):
        self.assertEqual(
            self.storage.get_public_url('avatars', 'u1/a.png'),
            'https://project.storage.test/storage/v1/object/public/avatars/u1/a.png',
        )


class BuildStorageClientTests(unittest.TestCase):
    def test_falls_back_to_memory_without_endpoint(self):
        self.assertIsInstance(build_storage_client({'STORAGE_ENDPOINT': None}), InMemoryStorageClient)

    @patch('storage.boto3.client')
    def test_builds_s3_client(self, _):
        client = build_storage_client({
            'STORAGE_ENDPOINT': 'https://s3.test',
            'STORAGE_REGION': 'us-east-1',
            'STORAGE_ACCESS_KEY_ID': 'k',
            'STORAGE_SECRET_ACCESS_KEY': 's',
            'STORAGE_PUBLIC_URL': 'https://cdn.test',
        })
        self.assertIsInstance(client, S3StorageClient)
        self.assertEqual(client.get_public_url('images', 'a.png'), 'https://cdn.test/images/a.png')


if __name__ == '__main__':
    unittest.main()
