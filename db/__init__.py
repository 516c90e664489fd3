from .db import (
    get_engine,
    get_session,
    create_all,
    dispose_engine,
    insert_link_post,
    insert_status_change,
    list_due,
    mark_executed,
    get_item,
    list_all,
    delete,
)  # noqa: F401
from .models import LinkPost, StatusChange  # noqa: F401
