#!/usr/bin/env python3
"""
Live check against a running service (uvicorn app.main:app).

Creates a premium and a vip account, submits one job each (premium first),
drives the queue through the trigger client and checks that the vip job was
dispatched first.
"""
import asyncio
import os
import sys
import uuid

sys.path.append(os.getcwd())

import httpx
from queue_trigger.client import TriggerClient

API_URL = os.getenv("TRIGGER_BASE_URL", "http://localhost:8000")
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN")
SEED_URL = os.getenv("SEED_URL", "https://picsum.photos/seed/render/512/512")


async def wait_ready(client: httpx.AsyncClient) -> bool:
    print("Waiting for API to be ready...")
    for _ in range(30):
        try:
            resp = await client.get("/health")
            if resp.status_code == 200:
                print("API is ready!")
                return True
        except httpx.HTTPError:
            pass
        await asyncio.sleep(1)
    print("API failed to become ready.")
    return False


async def create_account(client: httpx.AsyncClient, tier: str) -> tuple[str, str]:
    account_id = f"e2e-{tier}-{uuid.uuid4().hex[:6]}"
    headers = {"X-Admin-Token": ADMIN_TOKEN} if ADMIN_TOKEN else {}
    resp = await client.post("/api/v1/admin/accounts", headers=headers, json={
        "id": account_id,
        "name": f"E2E {tier}",
        "tier": tier,
    })
    resp.raise_for_status()
    return account_id, resp.json()["api_key"]


async def submit(client: httpx.AsyncClient, account_id: str, api_key: str, tier: str) -> str:
    resp = await client.post("/api/v1/jobs", headers={"X-API-Key": api_key}, json={
        "sourceRef": SEED_URL,
        "prompt": f"A quiet harbor at dawn ({tier})",
        "accountId": account_id,
        "tier": tier,
    })
    if resp.status_code != 202:
        print(f"Failed to create job: {resp.status_code} {resp.text}")
        sys.exit(1)
    return resp.json()["jobId"]


async def verify():
    async with httpx.AsyncClient(base_url=API_URL, timeout=30.0) as client:
        if not await wait_ready(client):
            sys.exit(1)

        premium_id, premium_key = await create_account(client, "premium")
        vip_id, vip_key = await create_account(client, "vip")

        premium_job = await submit(client, premium_id, premium_key, "premium")
        vip_job = await submit(client, vip_id, vip_key, "vip")
        print(f"Submitted premium={premium_job} vip={vip_job}")

        trigger = TriggerClient(API_URL, admin_token=ADMIN_TOKEN)
        order = []
        try:
            for _ in range(10):
                result = await trigger.process()
                if not result or not result.get("processed"):
                    break
                order.append(result["jobId"])
        finally:
            await trigger.close()

        print(f"Dispatch order: {order}")
        ours = [j for j in order if j in (premium_job, vip_job)]
        if ours[:1] != [vip_job]:
            print("FAILURE: vip job was not dispatched first")
            sys.exit(1)

        for job_id, key in ((vip_job, vip_key), (premium_job, premium_key)):
            resp = await client.get(f"/api/v1/jobs/{job_id}", headers={"X-API-Key": key})
            job = resp.json()
            print(f"{job_id}: {job['status']} asset={job['asset_url']} fallback={job['used_fallback']}")

    print("SUCCESS: priority dispatch verified")


if __name__ == "__main__":
    asyncio.run(verify())
