from importlib import resources


def load_model_format() -> str:
    with resources.files(__package__).joinpath("data/model_format.md").open("r", encoding="utf-8") as fh:
        return fh.read()
