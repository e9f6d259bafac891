"""Top-level package for the receipt-to-expense extraction API.

This package contains everything required to run the FastAPI backend
that turns a photographed receipt into a list of candidate expenses.
It includes Pydantic schemas, the remote model client, the category
matcher, the receipt processing pipeline, API routers and the client
side scan flow controller that drives a receipt from upload to saved
expenses.

To run the API locally you can execute:

```bash
uvicorn expense_api.api.main:app --reload
```

This will serve the FastAPI application on http://localhost:8000 and
automatically reload on code changes. You can override configuration
values using environment variables or a ``.env`` file at the project
root.
"""

__all__: list[str] = []  # explicit for linters; populated dynamically elsewhere if needed
