import abc
import typing
from collections import deque

import attr
import inflection

from coda_mapper.exceptions import ConfigurationError, EntityWithoutIdentity, MissingColumnId, MissingTableId
from coda_mapper.fields import COLUMN_ID, RELATED, Identity, RelatedType, is_multiple, is_relation, resolve_related


class Visitor:
    def traverse_from(self, node: "Node") -> None:
        node.accept(self)
        for child in node.children:
            self.traverse_from(child)
        node.farewell(self)

    def visit_table(self, table: "TableNode") -> None:
        pass

    def leave_table(self, table: "TableNode") -> None:
        pass

    def visit_field(self, field: "FieldNode") -> None:
        pass

    def leave_field(self, field: "FieldNode") -> None:
        pass

    def visit_relation(self, relation: "RelationNode") -> None:
        pass

    def leave_relation(self, relation: "RelationNode") -> None:
        pass


@attr.s(auto_attribs=True)
class Node(abc.ABC):
    name: str
    type: typing.Any
    children: typing.List["Node"] = attr.Factory(list)

    @abc.abstractmethod
    def accept(self, visitor: Visitor) -> None:
        pass

    @abc.abstractmethod
    def farewell(self, visitor: Visitor) -> None:
        pass


@attr.s(auto_attribs=True)
class FieldNode(Node):
    column_id: typing.Optional[str] = None
    multiple: bool = False
    is_identity: bool = False

    @property
    def is_relation(self) -> bool:
        return False

    def accept(self, visitor: Visitor) -> None:
        visitor.visit_field(self)

    def farewell(self, visitor: Visitor) -> None:
        visitor.leave_field(self)


@attr.s(auto_attribs=True)
class RelationNode(FieldNode):
    related: typing.Optional[RelatedType] = None

    @property
    def is_relation(self) -> bool:
        return True

    @property
    def related_type(self) -> type:
        return resolve_related(self.related)

    def accept(self, visitor: Visitor) -> None:
        visitor.visit_relation(self)

    def farewell(self, visitor: Visitor) -> None:
        visitor.leave_relation(self)


@attr.s(auto_attribs=True)
class TableNode(Node):
    table_id: typing.Optional[str] = None

    def accept(self, visitor: Visitor) -> None:
        visitor.visit_table(self)

    def farewell(self, visitor: Visitor) -> None:
        visitor.leave_table(self)


@attr.s(auto_attribs=True)
class TableTree:
    root: TableNode

    def __iter__(self) -> typing.Generator[Node, None, None]:
        def iterate_dfs() -> typing.Generator[Node, None, None]:
            nodes_left: typing.Deque[Node] = deque([self.root])

            while nodes_left:
                current = nodes_left.pop()
                yield current
                nodes_left.extend(current.children[::-1])

        return iterate_dfs()

    @property
    def entity_type(self) -> type:
        return self.root.type

    @property
    def table_id(self) -> typing.Optional[str]:
        return self.root.table_id

    @property
    def identity(self) -> FieldNode:
        return next(node for node in self.fields if node.is_identity)

    @property
    def fields(self) -> typing.List[FieldNode]:
        return [node for node in self.root.children if isinstance(node, FieldNode)]

    def require_table_id(self) -> str:
        if not self.table_id:
            raise MissingTableId(f"__table_id__ not set for class {self.entity_type.__name__}")
        return self.table_id

    def field(self, name: str) -> FieldNode:
        for node in self.fields:
            if node.name == name:
                return node
        raise ConfigurationError(f"Class {self.entity_type.__name__} has no field {name}")

    def require_column_id(self, name: str) -> str:
        node = self.field(name)
        if not node.column_id:
            raise MissingColumnId(f"Column id not set for field {name} in class {self.entity_type.__name__}")
        return node.column_id


def build(root: type) -> TableTree:
    children: typing.List[Node] = []

    for field in attr.fields(root):
        field_type = field.type
        is_identity = Identity.is_identity(field)
        if is_identity and getattr(field_type, "__origin__", None) is Identity:
            field_type = field_type.__args__[0]

        kwargs = dict(
            name=field.name,
            type=field_type,
            column_id=field.metadata.get(COLUMN_ID),
            multiple=is_multiple(field),
            is_identity=is_identity,
        )
        if is_relation(field):
            children.append(RelationNode(related=field.metadata[RELATED], **kwargs))
        else:
            children.append(FieldNode(**kwargs))

    identities = [node for node in children if node.is_identity]
    if not identities:
        raise EntityWithoutIdentity(f"Class {root.__name__} declares no Identity field")
    if len(identities) > 1:
        raise ConfigurationError(f"Class {root.__name__} declares more than one Identity field")

    table_name = inflection.underscore(root.__name__)
    return TableTree(TableNode(table_name, root, children, getattr(root, "__table_id__", None)))
