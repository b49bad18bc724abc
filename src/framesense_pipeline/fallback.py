# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

from typing import List

from framesense_pipeline.models import QuestionType, ServiceKind, Tier
from framesense_pipeline.policy import FALLBACK_CHAINS, is_service_allowed
from framesense_pipeline.utils.logger import logger


class FallbackChainBuilder:
    """
    Produces the ordered list of services to try for a request.

    The primary service always comes first; the remaining entries follow the
    question type's template, restricted to services the tier may use and
    without repeats. The chain is finite by construction.
    """

    def build_chain(self, primary: ServiceKind, question_type: QuestionType, tier: Tier) -> List[ServiceKind]:
        template = FALLBACK_CHAINS.get(question_type, FALLBACK_CHAINS[QuestionType.DESCRIBE_SCENE])

        chain: List[ServiceKind] = [primary]
        for service in template:
            if service in chain:
                continue
            if not is_service_allowed(service, tier):
                logger.debug(f"Fallback chain: skipping {service.value}, not available at {tier.value}")
                continue
            chain.append(service)

        logger.debug(f"Fallback chain for {question_type.value} ({tier.value}): {[s.value for s in chain]}")
        return chain
