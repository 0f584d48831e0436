"""WebSocket relay functions for the container terminal.

Frames are forwarded unchanged in both directions; text stays text and
binary stays binary.
"""

from starlette.websockets import WebSocket
from websockets.asyncio.client import ClientConnection


async def relay_client_to_host(client_ws: WebSocket, host_ws: ClientConnection) -> None:
    """Relay frames from the operator to the host agent shell."""
    while True:
        data = await client_ws.receive()
        if data["type"] == "websocket.receive":
            if data.get("text") is not None:
                await host_ws.send(data["text"])
            elif data.get("bytes") is not None:
                await host_ws.send(data["bytes"])
        elif data["type"] == "websocket.disconnect":
            break
    # Ends relay_host_to_client as well
    await host_ws.close()


async def relay_host_to_client(client_ws: WebSocket, host_ws: ClientConnection) -> None:
    """Relay frames from the host agent shell to the operator."""
    async for message in host_ws:
        if isinstance(message, str):
            await client_ws.send_text(message)
        else:
            await client_ws.send_bytes(message)
