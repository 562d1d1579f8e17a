"""Zones are not stored. A zone is every ward sharing a corporate name."""
from collections import OrderedDict
from typing import Iterable, List

import schemas


def group_wards(wards: Iterable) -> List[schemas.Zone]:
    grouped = OrderedDict()
    for ward in sorted(wards, key=lambda w: (w.corporate_name, w.ward_name)):
        grouped.setdefault(ward.corporate_name, []).append(ward)

    zones = []
    for name, members in grouped.items():
        mohallas = []
        for ward in members:
            for mohalla in ward.mohallas or []:
                if mohalla not in mohallas:
                    mohallas.append(mohalla)
        zones.append(schemas.Zone(
            name=name,
            ward_count=len(members),
            wards=[schemas.Ward.model_validate(w) for w in members],
            mohallas=mohallas,
        ))
    return zones
