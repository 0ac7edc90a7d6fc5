import re
from typing import Set


def contains_one_of(values_to_restrict: Set):
    """
    Generates a validator that checks if a value contains exactly one of the specified keys.
    """
    def one_of(field, value, error):
        found_objects = values_to_restrict.intersection(value.keys())
        if len(found_objects) > 1:
            error(field, f"More than one value is present: {sorted(found_objects)}")
        elif len(found_objects) < 1:
            error(field, f"No values are present from set: {sorted(values_to_restrict)}")
    return one_of


def list_schema(required=False, list_member_type="string") -> dict:
    return {
        'type': 'list',
        'required': required,
        'schema': {
            'type': list_member_type,
        }
    }


def compiles_as_regex(field, value, error):
    for pattern in value:
        try:
            re.compile(pattern)
        except re.error as e:
            error(field, f"Invalid regular expression '{pattern}': {e}")


def regex_list_schema(required=False) -> dict:
    schema = list_schema(required=required)
    schema['check_with'] = compiles_as_regex
    return schema
