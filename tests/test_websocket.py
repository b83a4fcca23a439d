from tribeserver import websocket
from tribeserver.websocket import Client, Message, Pool, check_origin, serve_ws


class FakeConnection:
    def __init__(self, incoming=(), fail_send=False):
        self.incoming = list(incoming)
        self.sent = []
        self.closed = False
        self.fail_send = fail_send

    def receive(self):
        if not self.incoming:
            raise ConnectionError("closed")
        return self.incoming.pop(0)

    def send_json(self, obj):
        if self.fail_send:
            raise ConnectionError("broken")
        self.sent.append(obj)

    def close(self):
        self.closed = True


class FakeStore:
    def __init__(self, fail=False):
        self.saved = {}
        self.deleted = []
        self.fail = fail

    def save(self, host, conn):
        if self.fail:
            raise RuntimeError("store down")
        self.saved[host] = conn

    def delete(self, host):
        self.deleted.append(host)


def test_message_to_dict():
    assert Message(1, "user_connect", "h").to_dict() == {"type": 1, "msg": "user_connect", "body": "h"}


def test_register_greets_client_and_saves():
    store = FakeStore()
    pool = Pool(store)
    conn = FakeConnection()
    client = Client("host-a", conn, pool)
    assert pool.register(client) is True
    assert conn.sent == [{"type": 1, "msg": "user_connect", "body": "host-a"}]
    assert store.saved["host-a"] is conn
    assert pool.clients["host-a"] is client


def test_register_store_failure():
    pool = Pool(FakeStore(fail=True))
    conn = FakeConnection()
    assert pool.register(Client("host-a", conn, pool)) is False
    assert conn.sent == []


def test_read_broadcasts_then_leaves_pool():
    store = FakeStore()
    pool = Pool(store)
    conn_a = FakeConnection(incoming=[(1, b'{"host": "x"}')])
    conn_b = FakeConnection()
    client_a = Client("host-a", conn_a, pool)
    pool.register(client_a)
    pool.register(Client("host-b", conn_b, pool))

    client_a.read()

    expected = {"type": 1, "msg": "", "body": '{"host": "x"}'}
    assert expected in conn_b.sent
    assert "host-a" not in pool.clients
    assert "host-b" in pool.clients
    assert conn_a.closed is True
    assert conn_a.sent[-1] == {"type": 1, "msg": "", "body": "User Disconnected..."}
    assert store.deleted == ["host-a"]


def test_invalid_json_still_broadcast():
    pool = Pool()
    conn_a = FakeConnection(incoming=[(1, "not json")])
    client_a = Client("host-a", conn_a, pool)
    pool.register(client_a)
    client_a.read()
    assert {"type": 1, "msg": "", "body": "not json"} in conn_a.sent


def test_broadcast_stops_at_failed_client():
    pool = Pool()
    bad = FakeConnection(fail_send=True)
    good = FakeConnection()
    pool.register(Client("host-a", bad, pool))
    pool.register(Client("host-b", good, pool))
    assert pool.broadcast(Message(1, "", "hi")) == 0
    assert len(good.sent) == 1


def test_broadcast_reaches_all():
    pool = Pool()
    conns = [FakeConnection(), FakeConnection()]
    for i, conn in enumerate(conns):
        pool.register(Client(f"host-{i}", conn, pool))
    assert pool.broadcast(Message(1, "", "hi")) == len(conns)
    assert all(conn.sent[-1]["body"] == "hi" for conn in conns)


def test_serve_ws_registers_reads_and_cleans_up():
    pool = Pool()
    conn = FakeConnection()
    client = serve_ws(pool, conn)
    assert len(client.host) == websocket.TOKEN_LENGTH
    assert conn.sent[0]["msg"] == "user_connect"
    assert conn.sent[0]["body"] == client.host
    assert client.host not in pool.clients
    assert conn.closed is True


def test_check_origin_production():
    assert check_origin(websocket.PRODUCTION_HOST, "people.sphinx.chat") is True
    assert check_origin(websocket.PRODUCTION_HOST, "community.sphinx.chat") is True
    assert check_origin(websocket.PRODUCTION_HOST, "evil.example.com") is False


def test_check_origin_other_hosts_allow_all():
    assert check_origin("http://localhost:5002", "evil.example.com") is True