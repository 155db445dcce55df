import uvicorn
from config import SERVER_HOST, SERVER_PORT, RELOAD

if __name__ == "__main__":
    uvicorn.run("server:app", host=SERVER_HOST, port=SERVER_PORT, reload=RELOAD)
