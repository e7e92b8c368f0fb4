from typing import Dict

import attr

from coda_mapper.table_tree import TableTree, build


@attr.s(auto_attribs=True)
class Registry:
    entities_to_trees: Dict[type, TableTree] = attr.Factory(dict)

    def register(self, entity_cls: type) -> TableTree:
        tree = self.entities_to_trees[entity_cls] = build(entity_cls)
        return tree

    def describe(self, entity_cls: type) -> TableTree:
        try:
            return self.entities_to_trees[entity_cls]
        except KeyError:
            return self.register(entity_cls)


default_registry = Registry()


def describe(entity_cls: type) -> TableTree:
    return default_registry.describe(entity_cls)
