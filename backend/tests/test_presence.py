import asyncio
import unittest

from ws import Connection, ConnectionRegistry, PresenceBroadcaster, PresenceHub, RoomTracker


def drain(conn):
    frames = []
    while not conn.outbox.empty():
        frames.append(conn.outbox.get_nowait())
    return frames


def counts(conn, room_id):
    return [f["data"] for f in drain(conn) if f["event"] == f"update_room_count_{room_id}"]


class FakeSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)


class ConnectionRegistryTests(unittest.TestCase):
    def setUp(self):
        self.registry = ConnectionRegistry()

    def test_connect_and_disconnect_track_online_count(self):
        a = self.registry.connect()
        b = self.registry.connect()
        self.assertNotEqual(a.id, b.id)
        self.assertEqual(self.registry.online, 2)
        self.assertIs(self.registry.get(a.id), a)

        self.assertTrue(self.registry.disconnect(a))
        self.assertEqual(self.registry.online, 1)
        self.assertIsNone(self.registry.get(a.id))
        self.assertTrue(a.closed)

    def test_second_disconnect_is_a_noop(self):
        a = self.registry.connect()
        self.registry.connect()
        self.registry.disconnect(a)
        self.assertFalse(self.registry.disconnect(a))
        self.assertEqual(self.registry.online, 1)


class RoomTrackerTests(unittest.TestCase):
    def setUp(self):
        self.registry = ConnectionRegistry()
        self.tracker = RoomTracker()

    def test_unknown_room_has_no_members(self):
        self.assertEqual(self.tracker.member_count("nope"), 0)
        self.assertEqual(self.tracker.members("nope"), frozenset())

    def test_rejoin_does_not_double_count(self):
        c = self.registry.connect()
        self.assertTrue(self.tracker.join(c, "r1"))
        self.assertFalse(self.tracker.join(c, "r1"))
        self.assertEqual(self.tracker.member_count("r1"), 1)

    def test_leave_all_returns_exactly_joined_rooms(self):
        c = self.registry.connect()
        other = self.registry.connect()
        self.tracker.join(c, "r1")
        self.tracker.join(c, "r2")
        self.tracker.join(other, "r3")

        self.assertEqual(self.tracker.leave_all(c), {"r1", "r2"})
        self.assertEqual(c.rooms, set())
        self.assertEqual(self.tracker.member_count("r3"), 1)
        self.assertEqual(self.tracker.leave_all(c), set())

    def test_sole_member_leaving_empties_and_reaps_room(self):
        c = self.registry.connect()
        self.tracker.join(c, "r1")
        self.tracker.leave_all(c)
        self.assertEqual(self.tracker.member_count("r1"), 0)
        self.assertNotIn("r1", self.tracker.rooms)

    def test_closed_connection_cannot_join(self):
        c = self.registry.connect()
        self.registry.disconnect(c)
        self.assertFalse(self.tracker.join(c, "r1"))
        self.assertEqual(self.tracker.member_count("r1"), 0)


class PresenceBroadcasterTests(unittest.TestCase):
    def test_announce_reaches_every_member_only(self):
        registry = ConnectionRegistry()
        tracker = RoomTracker()
        broadcaster = PresenceBroadcaster(registry, tracker)
        a, b, outsider = registry.connect(), registry.connect(), registry.connect()
        tracker.join(a, "r1")
        tracker.join(b, "r1")

        self.assertEqual(broadcaster.announce("r1", 2), 2)
        self.assertEqual(drain(a), [{"event": "update_room_count_r1", "data": 2}])
        self.assertEqual(drain(b), [{"event": "update_room_count_r1", "data": 2}])
        self.assertEqual(drain(outsider), [])

    def test_announce_to_empty_room_sends_nothing(self):
        registry = ConnectionRegistry()
        broadcaster = PresenceBroadcaster(registry, RoomTracker())
        self.assertEqual(broadcaster.announce("ghost", 0), 0)


class PresenceHubTests(unittest.TestCase):
    def setUp(self):
        self.hub = PresenceHub()

    def test_two_members_then_one_leaves(self):
        a = self.hub.connect()
        self.assertEqual(self.hub.join_room(a, "r1"), 1)
        self.assertEqual(counts(a, "r1"), [1])

        b = self.hub.connect()
        self.assertEqual(self.hub.join_room(b, "r1"), 2)
        self.assertEqual(counts(a, "r1"), [2])
        self.assertEqual(counts(b, "r1"), [2])

        self.assertEqual(self.hub.disconnect(a), {"r1": 1})
        self.assertEqual(self.hub.tracker.member_count("r1"), 1)
        self.assertEqual(counts(b, "r1"), [1])
        # the leaving connection is not told about its own departure
        self.assertEqual(drain(a), [])

    def test_disconnect_from_several_rooms(self):
        c = self.hub.connect()
        d = self.hub.connect()
        self.hub.join_room(c, "r1")
        self.hub.join_room(c, "r2")
        self.hub.join_room(d, "r1")
        self.hub.join_room(d, "r2")
        drain(d)

        self.assertEqual(self.hub.disconnect(c), {"r1": 1, "r2": 1})
        self.assertEqual(counts(d, "r1"), [1])
        self.assertEqual(self.hub.tracker.member_count("r2"), 1)
        self.assertNotIn(c.id, self.hub.tracker.members("r1"))
        self.assertNotIn(c.id, self.hub.tracker.members("r2"))
        self.assertEqual(self.hub.registry.online, 1)

    def test_disconnect_twice_keeps_counter(self):
        c = self.hub.connect()
        self.hub.connect()
        self.hub.join_room(c, "r1")
        self.hub.disconnect(c)
        self.assertEqual(self.hub.disconnect(c), {})
        self.assertEqual(self.hub.registry.online, 1)

    def test_rejoin_only_tells_the_asker(self):
        a = self.hub.connect()
        b = self.hub.connect()
        self.hub.join_room(a, "r1")
        self.hub.join_room(b, "r1")
        drain(a)
        drain(b)

        self.assertEqual(self.hub.join_room(b, "r1"), 2)
        self.assertEqual(counts(b, "r1"), [2])
        self.assertEqual(drain(a), [])

    def test_counts_arrive_in_event_order(self):
        watcher = self.hub.connect()
        self.hub.join_room(watcher, "r1")
        others = [self.hub.connect() for _ in range(3)]
        for c in others:
            self.hub.join_room(c, "r1")
        for c in others:
            self.hub.disconnect(c)
        self.assertEqual(counts(watcher, "r1"), [1, 2, 3, 4, 3, 2, 1])

    def test_handle_ignores_bad_frames(self):
        c = self.hub.connect()
        self.hub.handle(c, "not json")
        self.hub.handle(c, '{"event": "join_room"}')
        self.hub.handle(c, '{"event": "join_room", "data": {"room": "r1"}}')
        self.hub.handle(c, '{"event": "shout", "data": "hi"}')
        self.assertEqual(self.hub.tracker.rooms, set())

        self.hub.handle(c, '{"event": "join_room", "data": {"roomID": "r1"}}')
        self.assertEqual(self.hub.tracker.member_count("r1"), 1)


class ConnectionPumpTests(unittest.TestCase):
    def run_pump(self, conn, frames):
        async def go():
            for event, data in frames:
                conn.deliver(event, data)
            task = asyncio.create_task(conn.pump())
            for _ in range(10):
                await asyncio.sleep(0)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        asyncio.run(go())

    def test_frames_are_written_in_order(self):
        sock = FakeSocket()
        conn = Connection("c1", sock)
        self.run_pump(conn, [("update_room_count_r1", 1), ("update_room_count_r1", 2)])
        self.assertEqual([f["data"] for f in sock.sent], [1, 2])

    def test_failed_sends_are_dropped(self):
        conn = Connection("c1", FakeSocket(fail=True))
        self.run_pump(conn, [("update_room_count_r1", 1)])
        self.assertTrue(conn.outbox.empty())

    def test_closed_connection_takes_no_frames(self):
        conn = Connection("c1")
        conn.closed = True
        self.assertFalse(conn.deliver("update_room_count_r1", 1))
        self.assertTrue(conn.outbox.empty())


if __name__ == "__main__":
    unittest.main()
