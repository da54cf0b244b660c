# Copyright 2025 ApeCloud, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
CustomResourceDefinition manifest for StellarNode.

The OpenAPI schema is derived from the pydantic models and then rewritten into
the structural form the API server accepts: no $ref, no null types, and
preserve-unknown-fields where a union cannot be expressed.
"""

import copy
from typing import Any, Dict

from stellar_operator.crd.models import GROUP, KIND, PLURAL, SHORT_NAMES, SINGULAR, VERSION, StellarNodeSpec, StellarNodeStatus

_DROPPED_KEYS = {"title", "description", "$defs"}


def _resolve(schema: Any, defs: Dict[str, Any]) -> Any:
    if isinstance(schema, list):
        return [_resolve(item, defs) for item in schema]
    if not isinstance(schema, dict):
        return schema

    if "$ref" in schema:
        target = defs[schema["$ref"].split("/")[-1]]
        merged = {**copy.deepcopy(target), **{k: v for k, v in schema.items() if k != "$ref"}}
        return _resolve(merged, defs)

    if "anyOf" in schema:
        options = [option for option in schema["anyOf"] if option.get("type") != "null"]
        nullable = len(options) != len(schema["anyOf"])
        rest = {k: v for k, v in schema.items() if k != "anyOf"}
        if len(options) == 1:
            resolved = {**_resolve(options[0], defs), **_resolve(rest, defs)}
        else:
            # Unions of different shapes are not structural
            resolved = {**_resolve(rest, defs), "x-kubernetes-preserve-unknown-fields": True}
        if nullable:
            resolved["nullable"] = True
        if "default" in resolved and resolved["default"] is None:
            del resolved["default"]
        return resolved

    result = {}
    for key, value in schema.items():
        if key in _DROPPED_KEYS:
            continue
        if key == "properties":
            result[key] = {name: _resolve(prop, defs) for name, prop in value.items()}
        else:
            result[key] = _resolve(value, defs)
    return result


def openapi_schema(model) -> Dict[str, Any]:
    """Structural OpenAPI v3 schema for a pydantic model, serialised by alias"""
    raw = model.model_json_schema(by_alias=True)
    return _resolve(raw, raw.get("$defs", {}))


def build_crd() -> Dict[str, Any]:
    spec_schema = openapi_schema(StellarNodeSpec)
    status_schema = openapi_schema(StellarNodeStatus)

    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": f"{PLURAL}.{GROUP}"},
        "spec": {
            "group": GROUP,
            "scope": "Namespaced",
            "names": {
                "kind": KIND,
                "plural": PLURAL,
                "singular": SINGULAR,
                "shortNames": list(SHORT_NAMES),
            },
            "versions": [
                {
                    "name": VERSION,
                    "served": True,
                    "storage": True,
                    "subresources": {"status": {}},
                    "additionalPrinterColumns": [
                        {"name": "Kind", "type": "string", "jsonPath": ".spec.nodeKind"},
                        {"name": "Network", "type": "string", "jsonPath": ".spec.network"},
                        {"name": "Phase", "type": "string", "jsonPath": ".status.phase"},
                        {"name": "Ready", "type": "integer", "jsonPath": ".status.readyReplicas"},
                        {"name": "Age", "type": "date", "jsonPath": ".metadata.creationTimestamp"},
                    ],
                    "schema": {
                        "openAPIV3Schema": {
                            "type": "object",
                            "required": ["spec"],
                            "properties": {
                                "spec": spec_schema,
                                "status": status_schema,
                            },
                        }
                    },
                }
            ],
        },
    }
