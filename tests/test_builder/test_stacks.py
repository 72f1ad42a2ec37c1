"""Unit tests for tech stacks (appbuilder.builder.stacks)."""

from __future__ import annotations

import pytest

from appbuilder.builder.stacks import (
    Authentication,
    DataFetching,
    MobileTechStack,
    WebFramework,
    WebTechStack,
    default_stack,
)

pytestmark = pytest.mark.unit


class TestWebTechStack:
    def test_defaults(self):
        stack = WebTechStack()
        assert stack.app_type == "web"
        assert stack.framework == WebFramework.NEXT
        assert stack.framework == "next"

    def test_describe(self):
        text = WebTechStack().describe()
        assert "next as the framework" in text
        assert "@tanstack/react-query for data fetching" in text
        assert "jest, @testing-library/react for testing" in text
        assert text.endswith("Use typescript for the code.")

    def test_base_libraries_skip_concepts(self):
        libs = WebTechStack().base_libraries()
        assert "zustand" in libs
        assert "tailwindcss" in libs
        assert "@tanstack/react-query" in libs
        assert "shadcn-ui" not in libs

    def test_no_data_fetching(self):
        stack = WebTechStack(data_fetching=None)
        assert "data fetching" not in stack.describe()


class TestMobileTechStack:
    def test_defaults(self):
        stack = MobileTechStack()
        assert stack.app_type == "mobile"
        assert stack.framework == "expo"
        assert "react-native-paper for UI" in stack.describe()

    def test_optional_parts(self):
        stack = MobileTechStack(
            data_fetching=DataFetching.SWR, authentication=Authentication.SUPABASE
        )
        text = stack.describe()
        assert "swr for data fetching" in text
        assert "@supabase/supabase-js for authentication" in text
        assert "@supabase/supabase-js" in stack.base_libraries()


class TestDefaultStack:
    def test_web(self):
        assert isinstance(default_stack("web"), WebTechStack)

    def test_mobile(self):
        assert isinstance(default_stack("mobile"), MobileTechStack)

    def test_unknown(self):
        with pytest.raises(ValueError):
            default_stack("desktop")
