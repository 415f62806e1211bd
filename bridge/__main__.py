import uvicorn

from bridge import config


def main() -> None:
  print(f"[bridge] websocket server listening on ws://0.0.0.0:{config.WS_PORT}/ws")
  uvicorn.run("bridge.app:app", host="0.0.0.0", port=config.WS_PORT)


if __name__ == "__main__":
  main()
