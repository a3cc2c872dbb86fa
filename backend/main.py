import logging

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from readnote.config import AppConfig
from readnote.models.settings import KEY_SIGS, RANGES

# Load environment variables from .env file
load_dotenv()

config = AppConfig.from_env()
logging.basicConfig(
    level=config.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="ReadNote API")

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/health")
async def health_check():
    return {"status": "healthy"}

@app.get("/presets")
async def presets():
    return {
        "ranges": [r.model_dump(mode="json") for r in RANGES],
        "key_signatures": [k.model_dump(mode="json") for k in KEY_SIGS],
    }

@app.websocket("/ws/{session_id}")
async def websocket_route(websocket: WebSocket, session_id: str):
    from readnote.api.websocket import websocket_endpoint
    await websocket_endpoint(websocket, session_id, config)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
