from dataclasses import fields, is_dataclass
from inspect import Parameter
from typing import Any, Dict, Type


class Hydrator:
    """Object responsible for casting rows from the data layer to a model"""

    fallback: Type[object] = dict
    """The model type that will be used if there is none passed in the
    hydrate method"""

    def hydrate(
        self, data: Dict[str, Any], model: Type[object] = Parameter.empty
    ):
        """Perform casting operation

        Columns that the model does not declare are dropped when the model
        is a dataclass, so `SELECT *` keeps working after a column is added.

        Args:
            data (Dict[str, Any]): Raw row from the source
            model (Type[object], optional): The model that will do the
                casting. If no value is passed, it will use whatever the
                Hydrator's fallback value is set to. Defaults to
                `Parameter.empty`.

        Returns:
            _type_: The data cast into the model
        """
        if model is Parameter.empty:
            model = self.fallback
        if model in (str, int, float, bool):
            return model(*data.values())
        if model is dict:
            return dict(data)
        if is_dataclass(model):
            names = {field.name for field in fields(model)}
            data = {key: value for key, value in data.items() if key in names}
        return model(**data)
