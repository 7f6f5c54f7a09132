"""``python -m exam_eval``: serve the API with uvicorn."""

import uvicorn

from exam_eval.config import get_settings
from exam_eval.main import create_app


def main() -> None:
    settings = get_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
