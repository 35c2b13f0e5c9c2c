from flask import request
from marshmallow import ValidationError

from casino_rounds.exceptions import ValidationException


def load_json_body(schema, required=True):
    """Loads the request JSON through schema; marshmallow errors become a ValidationException."""
    json_data = request.get_json(silent=True)
    if json_data is None:
        if required:
            raise ValidationException(status_message="Invalid JSON payload.")
        json_data = {}
    try:
        return schema.load(json_data)
    except ValidationError as e:
        raise ValidationException(status_message="Input validation failed.", details=e.messages)
