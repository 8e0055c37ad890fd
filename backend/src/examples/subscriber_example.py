import asyncio
import json
import logging

from client import SettingsClient
from utilities import setup_logging

async def main():
    setup_logging("debug")
    client = SettingsClient("http://localhost:3333")
    client.on_change(lambda settings: print("Received:", json.dumps(settings)))
    print("Awaiting settings... (press Ctrl+C to exit)")
    try:
        await client.run()
    finally:
        await client.close()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Stopped.")
