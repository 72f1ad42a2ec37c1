"""Target technology stacks for generated apps.

A stack is a strategy object handed to ``AppBuilder``: it tells the prompts
which framework and libraries to write against and which packages the
generated project starts with.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Protocol

from pydantic import BaseModel, Field


class TechStack(Protocol):
    """What the stage handlers need to know about a target stack."""

    @property
    def app_type(self) -> str: ...

    @property
    def framework(self) -> str: ...

    def describe(self) -> str: ...

    def base_libraries(self) -> list[str]: ...


# ---------------------------------------------------------------------------
# Web
# ---------------------------------------------------------------------------

class WebFramework(str, Enum):
    NEXT = "next"
    REMIX = "remix"
    GATSBY = "gatsby"
    ASTRO = "astro"
    VITE = "vite"


class WebStateManagement(str, Enum):
    REDUX = "redux"
    ZUSTAND = "zustand"
    JOTAI = "jotai"
    RECOIL = "recoil"
    CONTEXT = "context"


class WebUILibrary(str, Enum):
    MATERIAL_UI = "@mui/material"
    CHAKRA = "@chakra-ui/react"
    TAILWIND = "tailwindcss"
    SHADCN = "shadcn-ui"
    RADIX = "@radix-ui/react"


class DataFetching(str, Enum):
    REACT_QUERY = "@tanstack/react-query"
    APOLLO = "@apollo/client"
    RTK_QUERY = "@reduxjs/toolkit/query"
    SWR = "swr"
    AXIOS = "axios"


class WebTesting(str, Enum):
    JEST = "jest"
    VITEST = "vitest"
    TESTING_LIBRARY = "@testing-library/react"
    CYPRESS = "cypress"
    PLAYWRIGHT = "@playwright/test"


class Styling(str, Enum):
    STYLED_COMPONENTS = "styled-components"
    EMOTION = "@emotion/react"
    TAILWIND = "tailwindcss"
    CSS_MODULES = "css-modules"
    SCSS = "sass"


class BuildTool(str, Enum):
    WEBPACK = "webpack"
    VITE = "vite"
    TURBOPACK = "@vercel/turbopack"
    ROLLUP = "rollup"
    SWC = "@swc/core"


# Packages that describe a concept rather than an installable npm name.
_NOT_INSTALLABLE = {"context", "css-modules", "shadcn-ui", "@vercel/turbopack"}


class WebTechStack(BaseModel):
    """Defaults: Next.js, zustand, shadcn, react-query, tailwind."""

    framework: WebFramework = WebFramework.NEXT
    state_management: WebStateManagement = WebStateManagement.ZUSTAND
    ui_library: WebUILibrary = WebUILibrary.SHADCN
    data_fetching: Optional[DataFetching] = DataFetching.REACT_QUERY
    testing: list[WebTesting] = Field(
        default_factory=lambda: [WebTesting.JEST, WebTesting.TESTING_LIBRARY]
    )
    styling: Styling = Styling.TAILWIND
    build_tool: BuildTool = BuildTool.TURBOPACK

    @property
    def app_type(self) -> str:
        return "web"

    def describe(self) -> str:
        parts = [
            f"Use {self.framework.value} as the framework",
            f"{self.state_management.value} for state management",
            f"{self.ui_library.value} for UI",
            f"{self.styling.value} for styling",
        ]
        if self.data_fetching:
            parts.append(f"{self.data_fetching.value} for data fetching")
        parts.append(f"{', '.join(t.value for t in self.testing)} for testing")
        return ", ".join(parts) + ". Use typescript for the code."

    def base_libraries(self) -> list[str]:
        libs = [
            self.state_management.value,
            self.ui_library.value,
            self.styling.value,
        ]
        if self.data_fetching:
            libs.append(self.data_fetching.value)
        return [lib for lib in dict.fromkeys(libs) if lib not in _NOT_INSTALLABLE]


# ---------------------------------------------------------------------------
# Mobile
# ---------------------------------------------------------------------------

class MobileStateManagement(str, Enum):
    REDUX = "redux"
    ZUSTAND = "zustand"
    MOBX = "mobx"
    RECOIL = "recoil"
    JOTAI = "jotai"


class MobileUILibrary(str, Enum):
    REACT_NATIVE_PAPER = "react-native-paper"
    NATIVE_BASE = "native-base"
    TAMAGUI = "tamagui"
    RESTYLE = "@shopify/restyle"


class Navigation(str, Enum):
    EXPO_ROUTER = "expo-router"
    REACT_NAVIGATION = "@react-navigation/native"


class MobileTesting(str, Enum):
    JEST = "jest"
    TESTING_LIBRARY = "@testing-library/react-native"
    DETOX = "detox"


class Storage(str, Enum):
    ASYNC_STORAGE = "@react-native-async-storage/async-storage"
    MMKV = "react-native-mmkv"
    REALM = "@realm/react"


class Authentication(str, Enum):
    EXPO_AUTH = "expo-auth-session"
    FIREBASE = "@react-native-firebase/auth"
    CLERK = "@clerk/clerk-expo"
    SUPABASE = "@supabase/supabase-js"


class MobileTechStack(BaseModel):
    """Defaults: Expo with expo-router, zustand, react-native-paper."""

    state_management: MobileStateManagement = MobileStateManagement.ZUSTAND
    ui_library: MobileUILibrary = MobileUILibrary.REACT_NATIVE_PAPER
    navigation: Navigation = Navigation.EXPO_ROUTER
    data_fetching: Optional[DataFetching] = None
    testing: list[MobileTesting] = Field(
        default_factory=lambda: [MobileTesting.JEST, MobileTesting.TESTING_LIBRARY]
    )
    storage: Storage = Storage.ASYNC_STORAGE
    authentication: Optional[Authentication] = None

    @property
    def app_type(self) -> str:
        return "mobile"

    @property
    def framework(self) -> str:
        return "expo"

    def describe(self) -> str:
        parts = [
            "Use expo with react native",
            f"{self.state_management.value} for state management",
            f"{self.ui_library.value} for UI",
            f"{self.navigation.value} for navigation",
        ]
        if self.data_fetching:
            parts.append(f"{self.data_fetching.value} for data fetching")
        parts.append(f"{self.storage.value} for storage")
        if self.authentication:
            parts.append(f"{self.authentication.value} for authentication")
        return ", ".join(parts) + ". Use typescript for the code."

    def base_libraries(self) -> list[str]:
        libs = [
            self.state_management.value,
            self.ui_library.value,
            self.storage.value,
        ]
        if self.data_fetching:
            libs.append(self.data_fetching.value)
        if self.authentication:
            libs.append(self.authentication.value)
        return list(dict.fromkeys(libs))


def default_stack(app_type: str) -> TechStack:
    """The default stack for ``"web"`` or ``"mobile"``."""
    if app_type == "web":
        return WebTechStack()
    if app_type == "mobile":
        return MobileTechStack()
    raise ValueError(f"Unknown app type: {app_type}")
