# Tuning placeholders shared by recipes and model specs


class Tune:
    """Marks an argument whose value is chosen during tuning."""

    def __init__(self, id=None):
        self.id = id

    def __repr__(self):
        return f"tune({self.id!r})" if self.id else "tune()"

    def __eq__(self, other):
        return isinstance(other, Tune) and other.id == self.id

    def __hash__(self):
        return hash(('tune', self.id))


def tune(id=None):
    return Tune(id)


def is_tune(value):
    return isinstance(value, Tune)


def from_config_value(value):
    """YAML configs spell a placeholder as the string 'tune' or 'tune(<id>)'."""
    if isinstance(value, str):
        if value == 'tune' or value == 'tune()':
            return Tune()
        if value.startswith('tune(') and value.endswith(')'):
            return Tune(value[5:-1].strip('\'" ') or None)
    return value
