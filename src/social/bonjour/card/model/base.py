from sqlalchemy import String, orm
from sqlalchemy.orm import mapped_column

from typing_extensions import Annotated

str150 = Annotated[str, 150]
str512 = Annotated[str, 512]
str1500 = Annotated[str, 1500]
guidpk = Annotated[str, mapped_column(String(512), primary_key=True)]


class Base(orm.DeclarativeBase):
    type_annotation_map = {
        str150: String(150),
        str512: String(512),
        str1500: String(1500),
        guidpk: String(512),
    }
