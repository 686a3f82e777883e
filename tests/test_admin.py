import io
import unittest
from datetime import timedelta

from models import Activity, Image, User, db, utcnow
from storage import InMemoryStorageClient, StorageError
from tests.base import ApiTestCase, make_image_bytes


class AdminTestCase(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.admin_id, self.admin_token = self.create_user(
            email='admin@example.com', full_name='Site Admin', role='admin'
        )

    def get(self, path, **kwargs):
        return self.client.get(path, headers=self.auth(self.admin_token), **kwargs)


class AdminUserListTests(AdminTestCase):
    def setUp(self):
        super().setUp()
        now = utcnow()
        with self.app.app_context():
            for i in range(12):
                db.session.add(User(
                    full_name=f'Member {i:02d}',
                    email=f'member{i:02d}@example.com',
                    hashed_password='x',
                    created_at=now - timedelta(days=i + 1),
                ))
            db.session.add(User(full_name='Zoë Fox', email='zfox@studio.io', hashed_password='x',
                                created_at=now - timedelta(days=100)))
            db.session.commit()

    def test_pagination_metadata(self):
        response = self.get('/api/admin/users', query_string={'page': 1, 'limit': 5})
        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(len(payload['users']), 5)
        self.assertEqual(payload['pagination'], {
            'currentPage': 1, 'totalPages': 3, 'totalUsers': 14, 'limit': 5,
        })
        # the admin registered last, so is newest
        self.assertEqual(payload['users'][0]['email'], 'admin@example.com')
        for user in payload['users']:
            self.assertNotIn('hashed_password', user)

    def test_last_partial_page(self):
        payload = self.get('/api/admin/users', query_string={'page': 3, 'limit': 5}).get_json()
        self.assertEqual(len(payload['users']), 4)
        self.assertEqual(payload['users'][-1]['email'], 'zfox@studio.io')

    def test_page_beyond_range_is_empty(self):
        response = self.get('/api/admin/users', query_string={'page': 9, 'limit': 5})
        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload['users'], [])
        self.assertEqual(payload['pagination']['totalPages'], 3)
        self.assertEqual(payload['pagination']['currentPage'], 9)

    def test_default_limit(self):
        payload = self.get('/api/admin/users').get_json()
        self.assertEqual(payload['pagination']['limit'], 10)
        self.assertEqual(len(payload['users']), 10)

    def test_search_is_case_insensitive_over_name_and_email(self):
        payload = self.get('/api/admin/users', query_string={'search': 'FOX'}).get_json()
        self.assertEqual([u['email'] for u in payload['users']], ['zfox@studio.io'])
        self.assertEqual(payload['pagination']['totalUsers'], 1)

        payload = self.get('/api/admin/users', query_string={'search': 'Member 0'}).get_json()
        self.assertEqual(payload['pagination']['totalUsers'], 10)

    def test_huge_page_number_is_an_empty_page(self):
        response = self.get('/api/admin/users', query_string={'page': 10 ** 20, 'limit': 5})
        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload['users'], [])
        self.assertEqual(payload['pagination'], {
            'currentPage': 10 ** 20, 'totalPages': 3, 'totalUsers': 14, 'limit': 5,
        })

    def test_search_wildcards_match_literally(self):
        with self.app.app_context():
            db.session.add(User(full_name='100% Legit', email='legit@example.com', hashed_password='x'))
            db.session.add(User(full_name='Rate 1005', email='rate@example.com', hashed_password='x'))
            db.session.add(User(full_name='Under Score', email='under_score@example.com', hashed_password='x'))
            db.session.commit()

        payload = self.get('/api/admin/users', query_string={'search': '100%'}).get_json()
        self.assertEqual([u['full_name'] for u in payload['users']], ['100% Legit'])

        payload = self.get('/api/admin/users', query_string={'search': '_'}).get_json()
        self.assertEqual([u['email'] for u in payload['users']], ['under_score@example.com'])
        self.assertEqual(payload['pagination']['totalUsers'], 1)

    def test_invalid_paging_parameters(self):
        for params in ({'page': 0}, {'limit': -1}, {'page': 'two'}):
            self.assertEqual(self.get('/api/admin/users', query_string=params).status_code, 400, params)


class AdminStatsTests(AdminTestCase):
    def test_counts_with_trailing_window(self):
        user_id, _ = self.create_user()
        now = utcnow()
        with self.app.app_context():
            db.session.add(User(full_name='Old Timer', email='old@example.com', hashed_password='x',
                                created_at=now - timedelta(days=45)))
            db.session.add_all([
                Image(user_id=user_id, prompt='new', image_url='u', file_path='a', created_at=now),
                Image(user_id=user_id, prompt='old', image_url='u', file_path='b',
                      created_at=now - timedelta(days=31)),
            ])
            db.session.commit()

        response = self.get('/api/admin/stats')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['stats'], {
            'totalUsers': 3, 'totalImages': 2, 'newUsers': 2, 'recentImages': 1,
        })


class AdminUserDetailTests(AdminTestCase):
    def test_detail_strips_hash_and_lists_images(self):
        user_id, token = self.create_user()
        for prompt in ('first', 'second'):
            self.client.post('/api/generate-image', json={'prompt': prompt}, headers=self.auth(token))

        response = self.get(f'/api/admin/users/{user_id}')
        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload['user']['id'], user_id)
        self.assertNotIn('hashed_password', payload['user'])
        self.assertEqual(len(payload['images']), 2)
        timestamps = [image['created_at'] for image in payload['images']]
        self.assertEqual(timestamps, sorted(timestamps, reverse=True))

    def test_unknown_user(self):
        self.assertEqual(self.get('/api/admin/users/nope').status_code, 404)


class FlakyStorage(InMemoryStorageClient):
    fail_removals = False

    def remove(self, bucket, paths):
        if self.fail_removals:
            raise StorageError('storage offline')
        super().remove(bucket, paths)


class AdminDeleteUserTests(AdminTestCase):
    def setUp(self):
        super().setUp()
        self.storage = FlakyStorage()
        self.app.extensions['storage'] = self.storage
        self.user_id, self.token = self.create_user()
        for prompt in ('one', 'two'):
            self.client.post('/api/generate-image', json={'prompt': prompt}, headers=self.auth(self.token))
        self.client.patch(
            '/api/profile',
            data={'avatar': (io.BytesIO(make_image_bytes()), 'me.png', 'image/png')},
            headers=self.auth(self.token),
            content_type='multipart/form-data',
        )

    def delete(self, user_id):
        return self.client.delete(f'/api/admin/users/{user_id}', headers=self.auth(self.admin_token))

    def test_cascade_removes_objects_images_and_user(self):
        self.assertEqual(len(self.storage.list_paths('images', 'generated/')), 2)
        self.assertEqual(len(self.storage.list_paths('avatars', f'{self.user_id}/')), 1)

        response = self.delete(self.user_id)
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.get_json()['success'])

        self.assertEqual(self.storage.list_paths('images', 'generated/'), [])
        self.assertEqual(self.storage.list_paths('avatars', f'{self.user_id}/'), [])
        with self.app.app_context():
            self.assertIsNone(db.session.get(User, self.user_id))
            self.assertEqual(Image.query.filter_by(user_id=self.user_id).count(), 0)
            # audit trail is append-only
            self.assertEqual(Activity.query.filter_by(user_id=self.user_id).count(), 2)

    def test_storage_failure_does_not_block_row_deletion(self):
        self.storage.fail_removals = True
        response = self.delete(self.user_id)
        self.assertEqual(response.status_code, 200)
        with self.app.app_context():
            self.assertIsNone(db.session.get(User, self.user_id))
            self.assertEqual(Image.query.count(), 0)

    def test_unknown_user(self):
        self.assertEqual(self.delete('nope').status_code, 404)

    def test_requires_admin(self):
        response = self.client.delete(f'/api/admin/users/{self.admin_id}', headers=self.auth(self.token))
        self.assertEqual(response.status_code, 403)
        with self.app.app_context():
            self.assertIsNotNone(db.session.get(User, self.admin_id))


if __name__ == '__main__':
    unittest.main()
