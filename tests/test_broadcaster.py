import asyncio
import threading
import uuid

from ota_fleet.services.broadcaster import ProgressBroadcaster


def drain(subscription):
    messages = []
    while not subscription._queue.empty():
        messages.append(subscription._queue.get_nowait())
    return messages


def test_publish_reaches_every_subscriber():
    async def scenario():
        broadcaster = ProgressBroadcaster()
        job_id = uuid.uuid4()
        async with broadcaster.subscribe() as first, broadcaster.subscribe() as second:
            reached = broadcaster.publish(job_id, {"progress": 10})
            a = await first.get()
            b = await second.get()
        return reached, a, b, broadcaster.subscriber_count

    reached, a, b, remaining = asyncio.run(scenario())

    assert reached == 2
    assert a == b
    assert a.type == "job_update"
    assert a.data == {"progress": 10}
    assert remaining == 0


def test_late_subscriber_sees_no_history():
    async def scenario():
        broadcaster = ProgressBroadcaster()
        job_id = uuid.uuid4()
        broadcaster.publish(job_id, {"progress": 10})
        async with broadcaster.subscribe() as late:
            broadcaster.publish(job_id, {"progress": 20})
            await asyncio.sleep(0)
            return drain(late)

    messages = asyncio.run(scenario())

    assert [m.data["progress"] for m in messages] == [20]


def test_full_queue_drops_without_blocking():
    async def scenario():
        broadcaster = ProgressBroadcaster(max_queue_size=2)
        job_id = uuid.uuid4()
        async with broadcaster.subscribe() as slow, broadcaster.subscribe() as fast:
            for progress in range(5):
                broadcaster.publish(job_id, {"progress": progress})
                await fast.get()
            return slow.dropped, drain(slow), fast.dropped

    dropped, kept, fast_dropped = asyncio.run(scenario())

    assert dropped == 3
    assert [m.data["progress"] for m in kept] == [0, 1]
    assert fast_dropped == 0


def test_publish_from_worker_thread():
    async def scenario():
        broadcaster = ProgressBroadcaster()
        job_id = uuid.uuid4()
        async with broadcaster.subscribe() as subscription:
            worker = threading.Thread(target=broadcaster.publish, args=(job_id, {"progress": 50}))
            worker.start()
            message = await asyncio.wait_for(subscription.get(), timeout=2)
            worker.join()
        return job_id, message

    job_id, message = asyncio.run(scenario())

    assert message.job_id == job_id
    assert message.data["progress"] == 50


def test_closed_subscription_stops_receiving():
    async def scenario():
        broadcaster = ProgressBroadcaster()
        subscription = broadcaster.subscribe()
        subscription.close()
        subscription.close()
        reached = broadcaster.publish(uuid.uuid4(), {"progress": 1})
        return reached, [m async for m in subscription]

    reached, received = asyncio.run(scenario())

    assert reached == 0
    assert received == []
