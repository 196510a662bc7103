"""Editor document: pages of positioned text, image, shape and line elements.

Coordinates are in points with the origin at the top-left of the page, as the
editor canvas lays them out.
"""

from typing import Annotated, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _new_id() -> str:
    return uuid4().hex


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ElementBase(_Model):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    id: str = Field(default_factory=_new_id)
    x: float = 0
    y: float = 0
    width: float = 100
    height: float = 100
    rotation: float = 0
    opacity: float = Field(1, ge=0, le=1)
    z_index: int = Field(0, alias="zIndex")


class TextElement(ElementBase):
    type: Literal["text"] = "text"
    content: str = ""
    width: float = 400
    height: float = 20
    font_size: float = Field(12, alias="fontSize", gt=0)
    font_family: str = Field("helvetica", alias="fontFamily")
    font_weight: Literal["normal", "bold"] = Field("normal", alias="fontWeight")
    color: str = "#000000"
    align: Literal["left", "center", "right", "justify"] = "left"


class ImageElement(ElementBase):
    type: Literal["image"] = "image"
    image_url: str | None = Field(None, alias="imageUrl")
    image_fit: Literal["cover", "contain", "fill"] = Field("contain", alias="imageFit")
    width: float = 200
    height: float = 200


class ShapeElement(ElementBase):
    type: Literal["shape"] = "shape"
    shape: Literal["rectangle", "circle", "triangle"] = "rectangle"
    fill: str = "#CCCCCC"
    stroke: str = "#000000"
    stroke_width: float = Field(1, alias="strokeWidth", ge=0)


class LineElement(ElementBase):
    type: Literal["line"] = "line"
    height: float = 0
    stroke: str = "#000000"
    stroke_width: float = Field(1, alias="strokeWidth", ge=0)


Element = Annotated[
    Union[TextElement, ImageElement, ShapeElement, LineElement],
    Field(discriminator="type"),
]


class Margins(_Model):
    top: float = 72
    right: float = 72
    bottom: float = 72
    left: float = 72


class DocumentSettings(_Model):
    page_size: Literal["letter", "a4", "legal", "tabloid"] = Field("letter", alias="pageSize")
    orientation: Literal["portrait", "landscape"] = "portrait"
    margins: Margins = Field(default_factory=Margins)
    font: str = "helvetica"
    font_size: float = Field(12, alias="fontSize")
    line_height: float = Field(1.5, alias="lineHeight")


class EditorPage(_Model):
    id: str = Field(default_factory=_new_id)
    elements: list[Element] = Field(default_factory=list)


class EditorDocument(_Model):
    id: str = Field(default_factory=_new_id)
    title: str = "Untitled Document"
    template: str | None = None
    pages: list[EditorPage] = Field(min_length=1)
    settings: DocumentSettings = Field(default_factory=DocumentSettings)

    @model_validator(mode="after")
    def _unique_element_ids(self):
        seen: set[str] = set()
        for page in self.pages:
            for element in page.elements:
                if element.id in seen:
                    raise ValueError(f"Duplicate element id: {element.id}")
                seen.add(element.id)
        return self
