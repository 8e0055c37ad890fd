import asyncio
import json

import httpx

async def main():
    url = "http://localhost:3333/api/settings"
    async with httpx.AsyncClient() as client:
        # replace the settings document; omitted fields fall back to defaults
        doc = {
            "goalAmount": 5000,
            "raisedAmount": 1200,
            "bullets": ["Bouwfonds 2026", "Elke euro telt"],
        }
        print("Client document: ", doc)
        resp = await client.post(url, json=doc)
        print("Server:", resp.status_code, json.dumps(resp.json(), indent=2))

if __name__ == "__main__":
    asyncio.run(main())
