from typing import Set


def contains_one_of(allowed_keys: Set[str]):
    """
    Builds a cerberus `check_with` rule requiring a dict to carry exactly one of `allowed_keys`,
    e.g. exactly one auth method for a cluster.
    """
    def exactly_one(field, value, error):
        present = allowed_keys.intersection(value.keys())
        if not present:
            error(field, f"Expected one of {sorted(allowed_keys)}, found none")
        elif len(present) > 1:
            error(field, f"Expected only one of {sorted(allowed_keys)}, found {sorted(present)}")
    return exactly_one
