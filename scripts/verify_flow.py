"""Live smoke test against a running relay: presence, friend request, call signaling."""
import asyncio
import httpx
import websockets
import json
import logging
import uuid

import os

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

BASE_URL = os.getenv("BASE_URL", "http://localhost:8080")
WS_URL = os.getenv("WS_URL", "ws://localhost:8080")


async def check_health(client):
    try:
        resp = await client.get(f"{BASE_URL}/health")
        if resp.status_code == 200:
            logger.info(f"Relay healthy: {resp.json()}")
            return True
        logger.error(f"Health check failed: {resp.status_code} {resp.text}")
    except httpx.HTTPError as e:
        logger.error(f"Request Error (Health): {e}")
    return False


async def connect_user(user_id, event_queue, outbox):
    ws_url = f"{WS_URL}/ws?user_id={user_id}"
    logger.info(f"Connecting: {ws_url}")
    try:
        async with websockets.connect(ws_url) as ws:
            await ws.send(json.dumps({"type": "announce_online", "user_id": user_id, "username": user_id}))
            logger.info(f"Connected and announced ({user_id})")

            async def pump():
                while True:
                    frame = await outbox.get()
                    await ws.send(json.dumps(frame))

            sender = asyncio.create_task(pump())
            try:
                async for msg in ws:
                    data = json.loads(msg)
                    logger.info(f"[{user_id}] WS Message: {data['type']}")
                    await event_queue.put(data)
            finally:
                sender.cancel()

    except (websockets.exceptions.WebSocketException, OSError) as e:
        logger.error(f"Connection Error ({user_id}): {e}")


async def wait_for(queue, kind, timeout=5.0):
    while True:
        event = await asyncio.wait_for(queue.get(), timeout=timeout)
        if event['type'] == kind:
            return event


async def run_scenario():
    async with httpx.AsyncClient() as client:
        if not await check_health(client):
            return

        id_a = f"smoke_a_{uuid.uuid4().hex[:6]}"
        id_b = f"smoke_b_{uuid.uuid4().hex[:6]}"
        logger.info(f"User A: {id_a}, User B: {id_b}")

        queue_a, outbox_a = asyncio.Queue(), asyncio.Queue()
        queue_b, outbox_b = asyncio.Queue(), asyncio.Queue()

        # 1. A comes online and gets a snapshot
        task_a = asyncio.create_task(connect_user(id_a, queue_a, outbox_a))
        snapshot = await wait_for(queue_a, "presence_snapshot")
        logger.info(f"A snapshot: {snapshot['users']}")

        # 2. B comes online; A is told
        task_b = asyncio.create_task(connect_user(id_b, queue_b, outbox_b))
        await wait_for(queue_b, "presence_snapshot")
        try:
            changed = await wait_for(queue_a, "presence_changed")
            logger.info(f"SUCCESS: A saw {changed['user_id']} go {changed['state']}")
        except asyncio.TimeoutError:
            logger.error("FAILED: A never saw B come online")

        resp = await client.get(f"{BASE_URL}/api/presence/{id_b}")
        logger.info(f"Presence lookup for B: {resp.json()}")

        # 3. A sends a friend request to B
        await outbox_a.put({
            "type": "friend_request_sent",
            "to_user_id": id_b,
            "request_id": uuid.uuid4().hex,
            "from_user": {"id": id_a, "username": id_a},
        })
        try:
            await wait_for(queue_b, "new_friend_request")
            logger.info("SUCCESS: B received new_friend_request!")
        except asyncio.TimeoutError:
            logger.error("FAILED: Timeout waiting for friend request.")

        # 4. A offers a call to B; B answers
        call_id = f"call_smoke_{uuid.uuid4().hex[:9]}"
        await outbox_a.put({
            "type": "call_offer",
            "to_user_id": id_b,
            "call_id": call_id,
            "offer": {"type": "offer", "sdp": "v=0\r\n"},
        })
        try:
            offer = await wait_for(queue_b, "call_offer")
            assert offer['from_user_id'] == id_a
            logger.info("SUCCESS: B received call_offer!")
            await outbox_b.put({
                "type": "call_answer",
                "to_user_id": id_a,
                "call_id": call_id,
                "answer": {"type": "answer", "sdp": "v=0\r\n"},
            })
            await wait_for(queue_a, "call_answer")
            logger.info("SUCCESS: A received call_answer!")
        except asyncio.TimeoutError:
            logger.error("FAILED: Timeout during offer/answer exchange.")

        # 5. A hangs up
        await outbox_a.put({"type": "call_end", "to_user_id": id_b, "call_id": call_id})
        try:
            await wait_for(queue_b, "call_end")
            logger.info("SUCCESS: B received call_end!")
        except asyncio.TimeoutError:
            logger.error("FAILED: Timeout waiting for call_end.")

        task_b.cancel()
        try:
            gone = await wait_for(queue_a, "presence_changed")
            logger.info(f"SUCCESS: A saw {gone['user_id']} go {gone['state']}")
        except asyncio.TimeoutError:
            logger.error("FAILED: A never saw B go offline")
        task_a.cancel()

if __name__ == "__main__":
    asyncio.run(run_scenario())
