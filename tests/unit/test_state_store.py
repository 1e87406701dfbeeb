"""
Unit tests for the state stores.
"""

import json
import os
import threading

import pytest

from redis.exceptions import WatchError

from farmstore.services.cart_service import CartLedgerRegistry
from farmstore.services.state_store import (
    FileStateStore, MemoryStateStore, RedisStateStore, build_state_store
)
from farmstore.services.viewed_products_service import ViewedProductsLedger


class FakePipeline:
    """WATCH/MULTI/EXEC over FakeRedis with optimistic-lock semantics."""

    def __init__(self, client):
        self.client = client
        self.watched = {}
        self.queued = []

    def watch(self, *keys):
        self.watched = {key: self.client.versions.get(key, 0) for key in keys}

    def get(self, key):
        value = self.client.get(key)
        hook, self.client.on_watched_read = self.client.on_watched_read, None
        if hook:
            hook()
        return value

    def multi(self):
        pass

    def set(self, key, value):
        self.queued.append((key, value))

    def execute(self):
        for key, version in self.watched.items():
            if self.client.versions.get(key, 0) != version:
                raise WatchError(f'{key} changed')
        for key, value in self.queued:
            self.client.set(key, value)
        return [True] * len(self.queued)


class FakeRedis:
    """In-memory double for the parts of the redis client the store uses."""

    def __init__(self):
        self.data = {}
        self.versions = {}
        self.on_watched_read = None
        self.retries = 0

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value
        self.versions[key] = self.versions.get(key, 0) + 1

    def delete(self, key):
        self.data.pop(key, None)
        self.versions[key] = self.versions.get(key, 0) + 1

    def transaction(self, func, *watches, value_from_callable=False):
        while True:
            pipe = FakePipeline(self)
            pipe.watch(*watches)
            try:
                value = func(pipe)
                result = pipe.execute()
            except WatchError:
                self.retries += 1
                continue
            return value if value_from_callable else result


class PausingStore(MemoryStateStore):
    """Holds the first save that carries `section` until `release` is set."""

    def __init__(self, section):
        super().__init__()
        self.section = section
        self.paused = threading.Event()
        self.release = threading.Event()
        self._armed = True

    def save(self, namespace, document):
        if self._armed and document.get('state', {}).get(self.section):
            self._armed = False
            self.paused.set()
            self.release.wait(5)
        super().save(namespace, document)

def test_file_store_round_trip(tmp_path):
    store = FileStateStore(str(tmp_path))
    store.write_section('penchic-farm-storage', 'cart', [{'quantity': 1}])

    reopened = FileStateStore(str(tmp_path))
    assert reopened.read_section('penchic-farm-storage', 'cart') == [{'quantity': 1}]
    assert reopened.load('penchic-farm-storage')['version'] == 0


def test_file_store_missing_namespace_is_empty(tmp_path):
    store = FileStateStore(str(tmp_path))
    assert store.load('nothing') == {}
    assert store.read_section('nothing', 'cart', []) == []


def test_file_store_corrupt_file_starts_empty(tmp_path):
    store = FileStateStore(str(tmp_path))
    with open(os.path.join(str(tmp_path), 'ns.json'), 'w') as fh:
        fh.write('{not json')
    assert store.load('ns') == {}


def test_file_store_sanitises_namespace(tmp_path):
    store = FileStateStore(str(tmp_path))
    store.save('penchic-farm-storage:user/1', {'state': {}})
    assert os.listdir(str(tmp_path)) == ['penchic-farm-storage_user_1.json']


def test_file_store_delete(tmp_path):
    store = FileStateStore(str(tmp_path))
    store.save('ns', {'state': {'cart': []}})
    store.delete('ns')
    store.delete('ns')
    assert store.load('ns') == {}


def test_sections_do_not_overwrite_each_other():
    store = MemoryStateStore()
    store.write_section('ns', 'cart', [1])
    store.write_section('ns', 'viewedProducts', [2])
    assert store.load('ns')['state'] == {'cart': [1], 'viewedProducts': [2]}


def test_memory_store_returns_copies():
    store = MemoryStateStore()
    store.save('ns', {'state': {'cart': []}})
    document = store.load('ns')
    document['state']['cart'].append('mutated')
    assert store.load('ns')['state']['cart'] == []


def test_redis_store_uses_prefixed_key():
    client = FakeRedis()
    store = RedisStateStore(client, prefix='farmstore')
    store.write_section('ns', 'cart', [{'quantity': 2}])

    assert list(client.data) == ['farmstore:state:ns']
    assert json.loads(client.data['farmstore:state:ns'])['state']['cart'] == [{'quantity': 2}]
    assert store.read_section('ns', 'cart') == [{'quantity': 2}]

    store.delete('ns')
    assert store.load('ns') == {}


def test_build_state_store_selects_backend(tmp_path):
    assert isinstance(build_state_store({'STATE_BACKEND': 'memory'}), MemoryStateStore)
    store = build_state_store({'STATE_BACKEND': 'file', 'STATE_DIR': str(tmp_path)})
    assert isinstance(store, FileStateStore)


def test_redis_update_retries_on_concurrent_write():
    client = FakeRedis()
    store = RedisStateStore(client, prefix='farmstore')
    key = 'farmstore:state:ns'
    store.write_section('ns', 'cart', [1])

    # Another process saves the cart between this write's read and its EXEC
    client.on_watched_read = lambda: client.set(key, json.dumps({'state': {'cart': [1, 2]}, 'version': 0}))
    result = store.update_section('ns', 'viewedProducts', lambda items: items + ['feed'], [])

    assert result == ['feed']
    assert client.retries == 1
    assert json.loads(client.data[key])['state'] == {'cart': [1, 2], 'viewedProducts': ['feed']}


def test_viewed_write_keeps_cart_added_meanwhile():
    store = PausingStore('viewedProducts')
    registry = CartLedgerRegistry(store)
    viewed = ViewedProductsLedger(store, 'ns')
    eggs = {'id': 2, 'name': 'Eggs Tray', 'price': 450, 'stock': 20}

    viewer = threading.Thread(target=viewed.add, args=({'id': 1, 'name': 'Layer Feed', 'price': 3000},))
    viewer.start()
    assert store.paused.wait(5)

    # Cart add arrives while the viewed-products write is between load and save
    adder = threading.Thread(target=registry.get('ns').add, args=(eggs,), kwargs={'quantity': 2})
    adder.start()
    adder.join(0.2)
    store.release.set()
    viewer.join(5)
    adder.join(5)

    assert [(line.product_id, line.quantity) for line in registry.get('ns').lines()] == [(2, 2)]
    assert [item['id'] for item in viewed.recent()] == [1]


def test_update_section_failure_leaves_document_untouched():
    store = MemoryStateStore()
    store.write_section('ns', 'cart', [1])

    def explode(current):
        raise ValueError('bad line')

    with pytest.raises(ValueError):
        store.update_section('ns', 'cart', explode, [])
    assert store.read_section('ns', 'cart') == [1]


def test_namespace_lock_is_shared_per_namespace():
    store = MemoryStateStore()
    assert store.namespace_lock('a') is store.namespace_lock('a')
    assert store.namespace_lock('a') is not store.namespace_lock('b')
