import logging

import uvicorn

from jobchat import config

if __name__ == "__main__":
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    uvicorn.run("jobchat.main:app", host=config.HOST, port=config.PORT)
