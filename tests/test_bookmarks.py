from conftest import make_service


def test_bookmark_lifecycle(customer, marketplace):
    service_id = marketplace['service']

    resp = customer.post('/api/bookmarks', json={'service_id': service_id})
    assert resp.status_code == 201
    assert resp.get_json()['service']['id'] == service_id

    assert customer.get(f'/api/bookmarks/check/{service_id}').get_json() == {'is_bookmarked': True}
    bookmarks = customer.get('/api/bookmarks').get_json()
    assert [b['service']['name'] for b in bookmarks] == ['Ghost Removal']

    resp = customer.post('/api/bookmarks', json={'service_id': service_id})
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Already bookmarked'

    assert customer.delete(f'/api/bookmarks/{service_id}').status_code == 200
    assert customer.get(f'/api/bookmarks/check/{service_id}').get_json() == {'is_bookmarked': False}

    resp = customer.delete(f'/api/bookmarks/{service_id}')
    assert resp.status_code == 404
    assert resp.get_json()['message'] == 'Bookmark not found'


def test_cannot_bookmark_inactive_or_missing_service(app, customer, marketplace):
    retired = make_service(app, marketplace['provider'], marketplace['company'], name='Retired', is_active=False)

    resp = customer.post('/api/bookmarks', json={'service_id': retired})
    assert resp.status_code == 404
    assert resp.get_json()['message'] == 'Referenced service does not exist or is inactive'

    assert customer.post('/api/bookmarks', json={'service_id': 9999}).status_code == 404
    assert customer.post('/api/bookmarks', json={}).status_code == 400


def test_bookmarks_are_private(app, customer, provider, marketplace):
    customer.post('/api/bookmarks', json={'service_id': marketplace['service']})
    assert provider.get('/api/bookmarks').get_json() == []
